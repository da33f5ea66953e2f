from enum import Enum


class LoginStep(str, Enum):
    """
    Estados do fluxo de login.
    """
    ASKING_EMAIL = "login_asking_email"
    ASKING_PASSWORD = "login_asking_password"
