from __future__ import annotations


class KitchenError(Exception):
    """Base de todos os erros de domínio do backend da cozinha."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(KitchenError, ValueError):
    """Entrada inválida, detectada antes de qualquer escrita."""

    status_code = 400


class InvalidStatusTransition(ValidationError):
    status_code = 409


class NotFoundError(KitchenError, LookupError):
    status_code = 404


class ConcurrentUpdateError(KitchenError):
    """O pedido mudou entre a leitura e a escrita mais vezes que o limite de tentativas."""

    status_code = 409


class TransientStoreError(KitchenError):
    """Falha do banco/transporte. Não é repetida automaticamente; quem chamou decide."""

    status_code = 503
