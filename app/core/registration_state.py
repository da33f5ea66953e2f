from enum import Enum
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


class RegistrationStep(str, Enum):
    """
    Estados do fluxo de cadastro, na ordem do caminho feliz.
    Etapas opcionais (CNPJ e endereço do CNPJ) só são visitadas
    se o usuário escolher informar um CNPJ.
    """
    ASKING_NAME = "asking_name"
    ASKING_EMAIL = "asking_email"
    VERIFYING_CODE = "verifying_code"
    ASKING_CPF = "asking_cpf"
    ASKING_CNPJ_CHOICE = "asking_cnpj_choice"
    ASKING_CNPJ = "asking_cnpj"
    ASKING_PRIMARY_ADDRESS = "asking_primary_address"
    ASKING_SECONDARY_ADDRESS = "asking_secondary_address"
    AWAITING_DOCUMENT_PHOTO = "awaiting_document_photo"
    AWAITING_RESIDENCE_PROOF_PHOTO = "awaiting_residence_proof_photo"
    ASKING_PASSWORD = "asking_password"
    CONFIRMING_PASSWORD = "confirming_password"


PHOTO_STEPS = frozenset({
    RegistrationStep.AWAITING_DOCUMENT_PHOTO,
    RegistrationStep.AWAITING_RESIDENCE_PROOF_PHOTO,
})


# Grafo de transições permitidas. Qualquer mudança de etapa fora dele é um bug.
ALLOWED_TRANSITIONS: Dict[RegistrationStep, frozenset] = {
    RegistrationStep.ASKING_NAME: frozenset({RegistrationStep.ASKING_EMAIL}),
    RegistrationStep.ASKING_EMAIL: frozenset({RegistrationStep.VERIFYING_CODE}),
    RegistrationStep.VERIFYING_CODE: frozenset({RegistrationStep.ASKING_CPF}),
    RegistrationStep.ASKING_CPF: frozenset({RegistrationStep.ASKING_CNPJ_CHOICE}),
    RegistrationStep.ASKING_CNPJ_CHOICE: frozenset({
        RegistrationStep.ASKING_CNPJ,
        RegistrationStep.ASKING_PRIMARY_ADDRESS,
    }),
    RegistrationStep.ASKING_CNPJ: frozenset({RegistrationStep.ASKING_PRIMARY_ADDRESS}),
    RegistrationStep.ASKING_PRIMARY_ADDRESS: frozenset({
        RegistrationStep.ASKING_SECONDARY_ADDRESS,
        RegistrationStep.AWAITING_DOCUMENT_PHOTO,
    }),
    RegistrationStep.ASKING_SECONDARY_ADDRESS: frozenset({RegistrationStep.AWAITING_DOCUMENT_PHOTO}),
    RegistrationStep.AWAITING_DOCUMENT_PHOTO: frozenset({RegistrationStep.AWAITING_RESIDENCE_PROOF_PHOTO}),
    RegistrationStep.AWAITING_RESIDENCE_PROOF_PHOTO: frozenset({RegistrationStep.ASKING_PASSWORD}),
    RegistrationStep.ASKING_PASSWORD: frozenset({RegistrationStep.CONFIRMING_PASSWORD}),
    RegistrationStep.CONFIRMING_PASSWORD: frozenset({RegistrationStep.ASKING_PASSWORD}),
}


def is_valid_transition(current: RegistrationStep, new: RegistrationStep) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


@dataclass
class RegistrationData:
    """
    Dados coletados durante o fluxo de cadastro.
    """
    full_name: Optional[str] = None
    email: Optional[str] = None
    verification_code: Optional[str] = None
    email_verified: bool = False
    cpf: Optional[str] = None
    cnpj: Optional[str] = None
    primary_address: Optional[str] = None
    secondary_address: Optional[str] = None
    document_file_id: Optional[str] = None
    residence_proof_file_id: Optional[str] = None
    # Só o hash bcrypt; a senha em texto puro nunca fica na sessão
    password_hash: Optional[str] = None

    def missing_fields(self) -> List[str]:
        """
        Campos obrigatórios ainda ausentes para criar o usuário.
        """
        missing = []
        for name in (
            "full_name",
            "email",
            "cpf",
            "primary_address",
            "document_file_id",
            "residence_proof_file_id",
            "password_hash",
        ):
            if not getattr(self, name):
                missing.append(name)
        if not self.email_verified:
            missing.append("email_verified")
        # CNPJ e endereço do CNPJ andam juntos
        if bool(self.cnpj) != bool(self.secondary_address):
            missing.append("cnpj" if not self.cnpj else "secondary_address")
        return missing

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "RegistrationData":
        known = {k: v for k, v in (raw or {}).items() if k in cls.__dataclass_fields__}
        return cls(**known)
