import hashlib
import hmac
import random
import secrets
import string

ALGORITHM = "pbkdf2_sha256"
INVITATION_ALPHABET = string.ascii_uppercase + string.digits


class PasswordHasher:
    """Salted PBKDF2 hashes stored as ``algorithm$iterations$salt$digest``."""

    def __init__(self, iterations: int = 200_000) -> None:
        self.iterations = iterations

    def _digest(self, password: str, salt: bytes, iterations: int) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", password.encode(), salt, iterations)

    def hash(self, password: str) -> str:
        salt = secrets.token_bytes(16)
        digest = self._digest(password, salt, self.iterations)
        return f"{ALGORITHM}${self.iterations}${salt.hex()}${digest.hex()}"

    def verify(self, password: str, encoded: str | None) -> bool:
        if not encoded or password is None:
            return False
        try:
            algorithm, iterations, salt, digest = encoded.split("$")
            expected = bytes.fromhex(digest)
            got = self._digest(password, bytes.fromhex(salt), int(iterations))
        except ValueError:
            return False
        if algorithm != ALGORITHM:
            return False
        return hmac.compare_digest(expected, got)


def generate_starter_password(rng: random.Random | None = None) -> str:
    """Four uppercase letters and four digits in shuffled order."""
    rng = rng or secrets.SystemRandom()
    chars = [rng.choice(string.ascii_uppercase) for _ in range(4)]
    chars += [rng.choice(string.digits) for _ in range(4)]
    rng.shuffle(chars)
    return "".join(chars)


def generate_invitation_code(length: int = 6, rng: random.Random | None = None) -> str:
    rng = rng or secrets.SystemRandom()
    return "".join(rng.choice(INVITATION_ALPHABET) for _ in range(length))
