import smtplib

import pytest

from app.config import AppConfig
from app.core.exceptions import EmailDeliveryError
from app.infra.email_service import EmailService


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.calls = []
        self.sent = []
        FakeSMTP.instances.append(self)

    def starttls(self, context=None):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(("login", user, password))

    def send_message(self, msg):
        self.sent.append(msg)

    def quit(self):
        self.calls.append("quit")


class RefusingSMTP(FakeSMTP):
    def send_message(self, msg):
        raise smtplib.SMTPRecipientsRefused({msg["To"]: (550, b"no such user")})


@pytest.fixture(autouse=True)
def reset_instances():
    FakeSMTP.instances = []


@pytest.mark.nivel("baixo")
def test_dev_log_mode_prints_code(capsys):
    EmailService(AppConfig()).send_verification_code("ana@x.com", "123456")

    out = capsys.readouterr().out
    assert "Para: ana@x.com" in out
    assert "Seu código de confirmação é: 123456" in out


@pytest.mark.nivel("baixo")
def test_empty_recipient_is_rejected():
    with pytest.raises(ValueError):
        EmailService(AppConfig()).send_verification_code("  ", "123456")


@pytest.mark.nivel("medio")
def test_smtp_with_starttls_and_login(monkeypatch):
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    config = AppConfig(smtp_host="smtp.x.com", smtp_port=587, smtp_user="bot", smtp_password="pw", smtp_from="bot@x.com")

    EmailService(config).send_verification_code("ana@x.com", "654321")

    server = FakeSMTP.instances[0]
    assert (server.host, server.port) == ("smtp.x.com", 587)
    assert server.calls == ["starttls", ("login", "bot", "pw"), "quit"]
    msg = server.sent[0]
    assert msg["To"] == "ana@x.com"
    assert msg["From"] == "bot@x.com"
    assert msg["Subject"] == "Código de Confirmação"
    assert "654321" in msg.get_content()


@pytest.mark.nivel("medio")
def test_smtp_without_user_skips_auth(monkeypatch):
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)

    EmailService(AppConfig(smtp_host="localhost", smtp_port=25)).send_verification_code("ana@x.com", "1")

    assert FakeSMTP.instances[0].calls == ["quit"]


@pytest.mark.nivel("medio")
def test_smtp_failure_becomes_delivery_error(monkeypatch):
    monkeypatch.setattr(smtplib, "SMTP", RefusingSMTP)

    with pytest.raises(EmailDeliveryError) as error:
        EmailService(AppConfig(smtp_host="smtp.x.com")).send_verification_code("ana@x.com", "1")

    assert error.value.collaborator == "email"
    # A conexão é fechada mesmo com erro
    assert FakeSMTP.instances[0].calls[-1] == "quit"


@pytest.mark.nivel("medio")
def test_connection_error_becomes_delivery_error(monkeypatch):
    def refuse(host, port, timeout=None):
        raise ConnectionRefusedError("porta fechada")

    monkeypatch.setattr(smtplib, "SMTP", refuse)

    with pytest.raises(EmailDeliveryError):
        EmailService(AppConfig(smtp_host="smtp.x.com")).send_verification_code("ana@x.com", "1")
