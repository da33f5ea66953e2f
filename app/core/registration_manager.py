import asyncio
import logging
import secrets
from dataclasses import dataclass
from typing import Tuple
from sqlalchemy.orm import sessionmaker
from .session_manager import RegistrationSession
from .registration_state import RegistrationStep, RegistrationData, PHOTO_STEPS, is_valid_transition
from .normalizers import normalize_email, normalize_keyword, only_digits, parse_yes_no, is_same_address_keyword, mask_email
from .validators import valid_email, valid_cpf, valid_cnpj, valid_password
from .passwords import MAX_PASSWORD_BYTES, check_password, fits_bcrypt, hash_password
from .models import OutboundMessage
from .exceptions import (
    DuplicateEmailError,
    EmailDeliveryError,
    ProtocolViolation,
    SessionStateError,
    StorageError,
    UnknownStepError,
)
from ..config import AppConfig
from ..storage.repository import with_repository
from ..infra.email_service import EmailService
from ..infra.chat_sender import ChatSender

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 3
MIN_ADDRESS_LENGTH = 8
RESEND_KEYWORD = "reenviar"

WELCOME_MESSAGE = "Bem-vindo ao cadastro! Qual o seu nome completo?"
SUCCESS_MESSAGE = "✅ Cadastro finalizado! Use /login para acessar."

# Pergunta feita ao entrar em cada etapa
STEP_PROMPTS = {
    RegistrationStep.ASKING_NAME: "Qual o seu nome completo?",
    RegistrationStep.ASKING_EMAIL: "Digite seu e-mail:",
    RegistrationStep.VERIFYING_CODE: (
        "Um código foi enviado para seu e-mail. Digite o código recebido "
        f'(ou "{RESEND_KEYWORD}" para receber outro):'
    ),
    RegistrationStep.ASKING_CPF: "Digite seu CPF (apenas números, obrigatório):",
    RegistrationStep.ASKING_CNPJ_CHOICE: (
        'Deseja adicionar um CNPJ? (opcional)\n\nResponda "sim" para adicionar ou "não" para pular.'
    ),
    RegistrationStep.ASKING_CNPJ: "Digite seu CNPJ (somente números):",
    RegistrationStep.ASKING_PRIMARY_ADDRESS: "Digite seu endereço completo, igual ao do comprovante de residência:",
    RegistrationStep.ASKING_SECONDARY_ADDRESS: (
        'Digite o endereço do CNPJ (ou "mesmo" se for igual ao anterior):'
    ),
    RegistrationStep.AWAITING_DOCUMENT_PHOTO: "Envie uma foto do seu documento (frente):",
    RegistrationStep.AWAITING_RESIDENCE_PROOF_PHOTO: "Agora envie uma foto do comprovante de residência:",
    RegistrationStep.ASKING_PASSWORD: "Agora crie uma senha (mínimo {min_length} caracteres):",
    RegistrationStep.CONFIRMING_PASSWORD: "Confirme a senha digitando novamente:",
}

# Resposta quando a etapa de foto recebe texto
PHOTO_REQUIRED = {
    RegistrationStep.AWAITING_DOCUMENT_PHOTO: "Por favor, envie a foto do seu documento (como uma foto):",
    RegistrationStep.AWAITING_RESIDENCE_PROOF_PHOTO: "Por favor, envie a foto do seu comprovante de residência:",
}


@dataclass
class FlowStepResult:
    """
    Resultado de processar um evento no fluxo.

    `field_captured` indica que a entrada foi aceita (a sessão registra
    atividade). `end_session` pede que a sessão seja descartada: cadastro
    concluído ou interrompido.
    """
    reply: str
    field_captured: bool
    end_session: bool = False


def generate_verification_code() -> str:
    """
    Código de 6 dígitos, uniforme entre 100000 e 999999.
    """
    return str(100000 + secrets.randbelow(900000))


class RegistrationManager:
    """
    Gerencia o fluxo de cadastro de usuários.

    Implementa uma máquina de estados para conduzir o usuário
    através do processo de cadastro passo a passo. Cada chamada
    muda a sessão recebida e devolve exatamente uma resposta.
    """

    def __init__(
        self,
        db_session_factory: sessionmaker,
        email_service: EmailService,
        sender: ChatSender,
        config: AppConfig,
    ) -> None:
        self._db_session_factory = db_session_factory
        self._email_service = email_service
        self._sender = sender
        self._config = config

    def prompt_for(self, step: RegistrationStep) -> str:
        return STEP_PROMPTS[step].format(min_length=self._config.password_min_length)

    def start(self, chat_id: str, now: float) -> Tuple[RegistrationSession, str]:
        session = RegistrationSession(chat_id=chat_id, last_activity_at=now)
        logger.info(f"Usuário iniciou fluxo de cadastro: chat_id={chat_id}")
        return session, WELCOME_MESSAGE

    def _advance(self, session: RegistrationSession, new_step: RegistrationStep) -> str:
        if not is_valid_transition(session.step, new_step):
            raise SessionStateError(
                f"Transição inválida: {session.step.value} -> {new_step.value}",
                step=session.step.value,
            )
        logger.debug(f"Etapa de cadastro: chat_id={session.chat_id}, {session.step.value} -> {new_step.value}")
        session.step = new_step
        return self.prompt_for(new_step)

    def _captured(self, session: RegistrationSession, new_step: RegistrationStep, prefix: str = "") -> FlowStepResult:
        return FlowStepResult(reply=prefix + self._advance(session, new_step), field_captured=True)

    @staticmethod
    def _retry(reply: str) -> FlowStepResult:
        return FlowStepResult(reply=reply, field_captured=False)

    async def handle_text(self, session: RegistrationSession, text: str) -> FlowStepResult:
        """
        Processa uma mensagem de texto na etapa atual.

        Levanta ProtocolViolation se a etapa espera uma foto e
        UnknownStepError se a sessão estiver numa etapa desconhecida.
        """
        step = session.step
        data = session.data
        text = text or ""

        if step in PHOTO_STEPS:
            raise ProtocolViolation(PHOTO_REQUIRED[step])

        # 1. ASKING_NAME: coletar nome completo
        if step == RegistrationStep.ASKING_NAME:
            name = " ".join(text.split())
            if len(name) < MIN_NAME_LENGTH:
                return self._retry("Nome inválido. Por favor, digite seu nome completo:")
            data.full_name = name
            return self._captured(session, RegistrationStep.ASKING_EMAIL)

        # 2. ASKING_EMAIL: validar, checar duplicidade e enviar o código
        if step == RegistrationStep.ASKING_EMAIL:
            return await self._handle_email(session, text)

        # 3. VERIFYING_CODE: conferir o código recebido por e-mail
        if step == RegistrationStep.VERIFYING_CODE:
            return await self._handle_code(session, text)

        # 4. ASKING_CPF
        if step == RegistrationStep.ASKING_CPF:
            if not valid_cpf(text, strict=self._config.strict_tax_id):
                return self._retry("CPF inválido. Digite novamente (somente números):")
            data.cpf = only_digits(text)
            return self._captured(session, RegistrationStep.ASKING_CNPJ_CHOICE)

        # 5. ASKING_CNPJ_CHOICE: CNPJ é opcional
        if step == RegistrationStep.ASKING_CNPJ_CHOICE:
            answer = parse_yes_no(text)
            if answer is None:
                return self._retry('Responda apenas com "sim" ou "não":')
            if answer:
                return self._captured(session, RegistrationStep.ASKING_CNPJ)
            return self._captured(session, RegistrationStep.ASKING_PRIMARY_ADDRESS)

        # 6. ASKING_CNPJ: "não" aqui desiste do CNPJ
        if step == RegistrationStep.ASKING_CNPJ:
            if parse_yes_no(text) is False:
                data.cnpj = None
                return self._captured(session, RegistrationStep.ASKING_PRIMARY_ADDRESS)
            if not valid_cnpj(text, strict=self._config.strict_tax_id):
                return self._retry('CNPJ inválido. Digite novamente ou envie "não" para pular.')
            data.cnpj = only_digits(text)
            return self._captured(session, RegistrationStep.ASKING_PRIMARY_ADDRESS)

        # 7. ASKING_PRIMARY_ADDRESS
        if step == RegistrationStep.ASKING_PRIMARY_ADDRESS:
            address = text.strip()
            if len(address) < MIN_ADDRESS_LENGTH:
                return self._retry("Endereço muito curto. Digite o endereço completo, igual ao do comprovante:")
            data.primary_address = address
            if data.cnpj:
                return self._captured(session, RegistrationStep.ASKING_SECONDARY_ADDRESS)
            return self._captured(session, RegistrationStep.AWAITING_DOCUMENT_PHOTO)

        # 8. ASKING_SECONDARY_ADDRESS: só existe com CNPJ
        if step == RegistrationStep.ASKING_SECONDARY_ADDRESS:
            if is_same_address_keyword(text):
                data.secondary_address = data.primary_address
            else:
                address = text.strip()
                if len(address) < MIN_ADDRESS_LENGTH:
                    return self._retry(
                        'Endereço muito curto. Digite o endereço do CNPJ ou "mesmo" para repetir o anterior:'
                    )
                data.secondary_address = address
            return self._captured(session, RegistrationStep.AWAITING_DOCUMENT_PHOTO)

        # 9. ASKING_PASSWORD: a sessão guarda só o hash
        if step == RegistrationStep.ASKING_PASSWORD:
            if not valid_password(text, min_length=self._config.password_min_length):
                return self._retry(
                    f"Senha fraca. Digite uma senha com pelo menos {self._config.password_min_length} caracteres:"
                )
            if not fits_bcrypt(text):
                return self._retry(
                    f"Senha muito longa. Digite uma senha de até {MAX_PASSWORD_BYTES} caracteres "
                    "(letras acentuadas contam como dois):"
                )
            data.password_hash = await asyncio.to_thread(hash_password, text, self._config.bcrypt_rounds)
            return self._captured(session, RegistrationStep.CONFIRMING_PASSWORD)

        # 10. CONFIRMING_PASSWORD: diferente volta para a senha
        if step == RegistrationStep.CONFIRMING_PASSWORD:
            matches = await asyncio.to_thread(check_password, text, data.password_hash or "")
            if not matches:
                data.password_hash = None
                self._advance(session, RegistrationStep.ASKING_PASSWORD)
                return FlowStepResult(
                    reply="Senhas não coincidem! Digite sua senha novamente:",
                    field_captured=True,
                )
            return await self._finish(session)

        raise UnknownStepError(getattr(step, "value", str(step)))

    async def handle_photo(self, session: RegistrationSession, file_id: str) -> FlowStepResult:
        """
        Processa uma foto. Só as etapas de documento aceitam fotos.
        """
        step = session.step
        data = session.data

        if step == RegistrationStep.AWAITING_DOCUMENT_PHOTO:
            data.document_file_id = file_id
            logger.debug(f"Foto do documento recebida: chat_id={session.chat_id}")
            return self._captured(session, RegistrationStep.AWAITING_RESIDENCE_PROOF_PHOTO, "Foto do documento recebida! ")

        if step == RegistrationStep.AWAITING_RESIDENCE_PROOF_PHOTO:
            data.residence_proof_file_id = file_id
            logger.debug(f"Comprovante de residência recebido: chat_id={session.chat_id}")
            return self._captured(session, RegistrationStep.ASKING_PASSWORD, "Comprovante recebido! ")

        if isinstance(step, RegistrationStep):
            raise ProtocolViolation(f"Nesta etapa esperamos uma resposta em texto. {self.prompt_for(step)}")
        raise UnknownStepError(getattr(step, "value", str(step)))

    async def _send_code(self, session: RegistrationSession, email: str) -> bool:
        """
        Gera e envia um código novo. Retorna False se o envio falhar.
        """
        code = generate_verification_code()
        try:
            await asyncio.to_thread(self._email_service.send_verification_code, email, code)
        except EmailDeliveryError as e:
            logger.error(
                f"Falha ao enviar código: chat_id={session.chat_id}, step={session.step.value}, "
                f"collaborator={e.collaborator}, email={mask_email(email)}"
            )
            return False
        session.data.verification_code = code
        session.code_attempts = 0
        logger.info(f"Código de verificação enviado: chat_id={session.chat_id}, email={mask_email(email)}")
        return True

    async def _handle_email(self, session: RegistrationSession, text: str) -> FlowStepResult:
        email = normalize_email(text)
        if not valid_email(email):
            return self._retry("E-mail inválido. Digite novamente:")

        existing = await asyncio.to_thread(
            with_repository, self._db_session_factory, lambda repo: repo.find_user_by_email(email)
        )
        if existing is not None:
            logger.warning(f"Tentativa de cadastro com e-mail existente: chat_id={session.chat_id}, email={mask_email(email)}")
            return self._retry("Este e-mail já está cadastrado. Use /login para acessar ou digite outro e-mail:")

        if not await self._send_code(session, email):
            return self._retry("Não foi possível enviar o código para este e-mail. Verifique o endereço e digite novamente:")

        session.data.email = email
        return self._captured(session, RegistrationStep.VERIFYING_CODE)

    async def _handle_code(self, session: RegistrationSession, text: str) -> FlowStepResult:
        data = session.data

        if normalize_keyword(text) == RESEND_KEYWORD:
            if not await self._send_code(session, data.email):
                return self._retry(f'Não foi possível reenviar o código. Digite "{RESEND_KEYWORD}" para tentar de novo.')
            return FlowStepResult(reply="Enviamos um novo código. Digite o código recebido:", field_captured=True)

        if data.verification_code and text.strip() == data.verification_code:
            data.email_verified = True
            data.verification_code = None
            return self._captured(session, RegistrationStep.ASKING_CPF)

        session.code_attempts += 1
        max_attempts = self._config.code_max_attempts
        logger.warning(
            f"Código incorreto: chat_id={session.chat_id}, attempts={session.code_attempts}, max={max_attempts}"
        )
        if max_attempts and session.code_attempts >= max_attempts:
            return FlowStepResult(
                reply="Número máximo de tentativas atingido. Digite /cadastro para recomeçar.",
                field_captured=False,
                end_session=True,
            )
        return self._retry("Código incorreto! Digite o código que recebeu no e-mail:")

    async def _finish(self, session: RegistrationSession) -> FlowStepResult:
        data: RegistrationData = session.data
        missing = data.missing_fields()
        if missing:
            raise SessionStateError(
                f"Cadastro incompleto: faltando {', '.join(missing)}",
                step=session.step.value,
            )

        def create(repo):
            return repo.create_user(
                full_name=data.full_name,
                email=data.email,
                cpf=data.cpf,
                cnpj=data.cnpj,
                primary_address=data.primary_address,
                secondary_address=data.secondary_address,
                document_file_id=data.document_file_id,
                residence_proof_file_id=data.residence_proof_file_id,
                password_hash=data.password_hash,
                chat_id=session.chat_id,
            )

        try:
            user = await asyncio.to_thread(with_repository, self._db_session_factory, create)
        except DuplicateEmailError:
            logger.warning(f"Cadastro recusado, e-mail duplicado: chat_id={session.chat_id}, email={mask_email(data.email)}")
            return FlowStepResult(
                reply="Este e-mail já foi cadastrado. Use /login para acessar.",
                field_captured=False,
                end_session=True,
            )
        except StorageError as e:
            logger.error(
                f"Falha ao salvar cadastro: chat_id={session.chat_id}, step={session.step.value}, "
                f"collaborator={e.collaborator}, code={e.code}"
            )
            return FlowStepResult(
                reply="Não foi possível concluir o cadastro agora. Digite /cadastro para tentar novamente.",
                field_captured=False,
                end_session=True,
            )

        logger.info(f"Cadastro concluído: chat_id={session.chat_id}, user_id={user.id}")
        await self._notify_admin(data)
        return FlowStepResult(reply=SUCCESS_MESSAGE, field_captured=True, end_session=True)

    async def _notify_admin(self, data: RegistrationData) -> None:
        admin_chat_id = self._config.admin_chat_id
        if not admin_chat_id:
            return
        try:
            await self._sender.send(
                OutboundMessage(chat_id=admin_chat_id, text=f"🆕 Novo cadastro: {data.full_name} ({data.email})")
            )
        except Exception as e:
            # Aviso ao admin não desfaz o cadastro
            logger.error(f"Falha ao notificar administrador: admin_chat_id={admin_chat_id}, error={type(e).__name__}: {e}")
