import logging
import smtplib
import ssl
from email.message import EmailMessage
from smtplib import SMTPException
from ..config import AppConfig
from ..core.exceptions import EmailDeliveryError
from ..core.normalizers import mask_email

logger = logging.getLogger(__name__)


class EmailService:
    """
    Serviço para envio de e-mails.
    Em desenvolvimento (SMTP_HOST=dev-log), apenas loga no console.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    def _build_message(self, to_email: str, code: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = "Código de Confirmação"
        msg["From"] = self._config.smtp_from
        msg["To"] = to_email
        msg.set_content(
            f"Seu código de confirmação é: {code}\n\n"
            "Digite esse código na conversa com o bot para continuar o cadastro.\n"
            "Se você não pediu este código, ignore este e-mail.\n"
        )
        return msg

    def send_verification_code(self, to_email: str, code: str) -> None:
        """
        Envia o código de verificação do cadastro.

        Levanta EmailDeliveryError se o envio falhar.
        """
        if not to_email or not to_email.strip():
            logger.error("Tentativa de envio de código sem destinatário")
            raise ValueError("to_email não pode estar vazio")

        msg = self._build_message(to_email, code)

        if self._config.smtp_host == "dev-log":
            logger.warning(
                f"⚠️ MODO DEV: E-mail NÃO foi enviado (apenas simulado). "
                f"Para enviar e-mails reais, configure SMTP_HOST no .env. "
                f"Destinatário: {mask_email(to_email)}"
            )
            print("\n" + "=" * 60)
            print("📧 CÓDIGO DE CONFIRMAÇÃO (DEV MODE - NÃO ENVIADO)")
            print("=" * 60)
            print(f"Para: {msg['To']}")
            print(f"Assunto: {msg['Subject']}")
            print("-" * 60)
            print(msg.get_content())
            print("=" * 60 + "\n")
            return

        try:
            logger.info(
                f"Iniciando conexão SMTP: host={self._config.smtp_host}, "
                f"port={self._config.smtp_port}, from={self._config.smtp_from}"
            )
            ssl_context = ssl.create_default_context()

            if self._config.smtp_port == 465:
                # SSL direto
                server = smtplib.SMTP_SSL(
                    self._config.smtp_host,
                    self._config.smtp_port,
                    timeout=30,
                    context=ssl_context,
                )
            else:
                server = smtplib.SMTP(self._config.smtp_host, self._config.smtp_port, timeout=30)
                if self._config.smtp_user:
                    server.starttls(context=ssl_context)

            try:
                if self._config.smtp_user:
                    logger.debug(f"Autenticando SMTP: user={self._config.smtp_user}")
                    server.login(self._config.smtp_user, self._config.smtp_password)
                server.send_message(msg)
            finally:
                server.quit()

            logger.info(
                f"✅ Código enviado via SMTP: to={mask_email(to_email)}, "
                f"host={self._config.smtp_host}, port={self._config.smtp_port}"
            )
        except (SMTPException, OSError) as e:
            logger.error(
                f"Erro SMTP ao enviar código: to={mask_email(to_email)}, "
                f"host={self._config.smtp_host}, port={self._config.smtp_port}, "
                f"error={type(e).__name__}: {e}"
            )
            raise EmailDeliveryError(f"Falha ao enviar código para {mask_email(to_email)}") from e
