"""
Hierarquia de exceções do bot.

Erros de validação de entrada não aparecem aqui: são respondidos
diretamente pelas máquinas de estado com uma nova pergunta.
"""
from typing import Optional


class EditaisBotError(Exception):
    """
    Exceção base da aplicação.
    """

    def __init__(self, message: str, code: str = "INTERNAL_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


class ExternalDependencyError(EditaisBotError):
    """
    Falha em um colaborador externo (e-mail, banco, site de editais).
    """

    def __init__(
        self,
        message: str = "Falha em serviço externo",
        collaborator: str = "unknown",
        code: str = "EXTERNAL_DEPENDENCY_ERROR",
    ) -> None:
        self.collaborator = collaborator
        super().__init__(message, code=code)


class EmailDeliveryError(ExternalDependencyError):
    def __init__(self, message: str = "Falha ao enviar e-mail") -> None:
        super().__init__(message, collaborator="email", code="EMAIL_DELIVERY_ERROR")


class StorageError(ExternalDependencyError):
    def __init__(self, message: str = "Falha ao acessar o banco de dados", code: str = "STORAGE_ERROR") -> None:
        super().__init__(message, collaborator="storage", code=code)


class DuplicateEmailError(StorageError):
    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"E-mail já cadastrado: {email}", code="DUPLICATE_EMAIL")


class DuplicateSiteError(StorageError):
    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"Site já cadastrado: {url}", code="DUPLICATE_SITE")


class ProtocolViolation(EditaisBotError):
    """
    Evento de tipo inesperado para a etapa atual (ex: texto quando
    esperamos uma foto). A sessão não muda; o usuário recebe `message`
    pedindo o tipo de entrada correto.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="PROTOCOL_VIOLATION")


class SessionStateError(EditaisBotError):
    """
    Estado de sessão corrompido. A sessão é descartada.
    """

    def __init__(self, message: str, step: Optional[str] = None, code: str = "SESSION_STATE_ERROR") -> None:
        self.step = step
        super().__init__(message, code=code)


class UnknownStepError(SessionStateError):
    def __init__(self, step: Optional[str]) -> None:
        super().__init__(f"Etapa desconhecida: {step}", step=step, code="UNKNOWN_STEP")
