import bcrypt

# bcrypt só considera os primeiros 72 bytes (e o bcrypt 5 recusa mais que isso)
MAX_PASSWORD_BYTES = 72


def fits_bcrypt(plain_password: str) -> bool:
    return len(plain_password.encode("utf-8")) <= MAX_PASSWORD_BYTES


def hash_password(plain_password: str, rounds: int = 12) -> str:
    hashed = bcrypt.hashpw(plain_password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def check_password(plain_password: str, password_hash: str) -> bool:
    """
    Compara senha com o hash salvo. Hash malformado ou senha acima do
    limite do bcrypt contam como senha errada.
    """
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False
