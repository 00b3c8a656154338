# vendgros/security/encryption.py
"""
채팅 메시지 암호화 (AES-256-GCM).

대화방마다 키를 따로 둔다: 마스터 키(MESSAGE_ENCRYPTION_KEY) 를
PBKDF2-HMAC-SHA256 으로 늘리고, salt 는 sha256(conversation_id).
저장 형식: base64(iv[16] || auth_tag[16] || ciphertext)
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import secrets
from functools import lru_cache
from typing import List, Sequence

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from vendgros.config import settings
from vendgros.errors import MessageDecryptionError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # 256 bits
IV_LENGTH = 16  # 128 bits
AUTH_TAG_LENGTH = 16  # 128 bits
PBKDF2_ITERATIONS = 100_000


@lru_cache(maxsize=256)
def _derive_key_cached(master_key: str, conversation_id: str) -> bytes:
    salt = hashlib.sha256(conversation_id.encode("utf-8")).digest()
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(master_key.encode("utf-8"))


def derive_key(conversation_id: str) -> bytes:
    """대화방 전용 256bit 키."""
    return _derive_key_cached(settings.MESSAGE_ENCRYPTION_KEY, str(conversation_id))


def encrypt_message(plaintext: str, conversation_id: str) -> str:
    # 호출마다 새 IV → 같은 평문도 매번 다른 암호문
    key = derive_key(conversation_id)
    iv = secrets.token_bytes(IV_LENGTH)

    # AESGCM 은 ciphertext || tag 를 돌려준다 → iv || tag || ciphertext 로 재배치
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]

    return base64.b64encode(iv + tag + ciphertext).decode("ascii")


def decrypt_message(ciphertext: str, conversation_id: str) -> str:
    """
    encrypt_message() 의 역. 대화방 불일치, 변조, 잘린 입력, base64 오류는
    모두 MessageDecryptionError.
    """
    try:
        combined = base64.b64decode(ciphertext, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MessageDecryptionError("Failed to decrypt message - invalid ciphertext or key") from e

    if len(combined) < IV_LENGTH + AUTH_TAG_LENGTH:
        raise MessageDecryptionError("Failed to decrypt message - invalid ciphertext or key")

    iv = combined[:IV_LENGTH]
    tag = combined[IV_LENGTH:IV_LENGTH + AUTH_TAG_LENGTH]
    encrypted = combined[IV_LENGTH + AUTH_TAG_LENGTH:]

    key = derive_key(conversation_id)
    try:
        plaintext = AESGCM(key).decrypt(iv, encrypted + tag, None)
        return plaintext.decode("utf-8")
    except (InvalidTag, UnicodeDecodeError) as e:
        logger.warning("message decryption failed for conversation %s", conversation_id)
        raise MessageDecryptionError("Failed to decrypt message - invalid ciphertext or key") from e


def generate_encryption_key() -> str:
    """MESSAGE_ENCRYPTION_KEY 용 랜덤 값."""
    return base64.b64encode(secrets.token_bytes(KEY_LENGTH)).decode("ascii")


def encrypt_attachments(attachments: Sequence[str], conversation_id: str) -> List[str]:
    return [encrypt_message(url, conversation_id) for url in attachments]


def decrypt_attachments(encrypted_attachments: Sequence[str], conversation_id: str) -> List[str]:
    return [decrypt_message(item, conversation_id) for item in encrypted_attachments]
