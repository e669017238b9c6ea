"""Point-to-point confidentiality and authenticity for dealer-distributed triple rows."""

import base64
import json
import os
from typing import Tuple

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, x25519
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from data_models import TripleRowPackage
from errors import SerializationError


class CryptoManager:
    """加密管理器，处理密钥派生、KEM封装以及签名校验."""

    KEM_INFO = b"beaver-triple-row"

    @staticmethod
    def encrypt_data(data: bytes, key: bytes, associated_data: bytes | None = None) -> Tuple[bytes, bytes]:
        """使用AES-GCM加密数据 / Encrypt a serialized payload with AES-GCM."""
        aesgcm = AESGCM(key)
        nonce = os.urandom(12)
        ciphertext = aesgcm.encrypt(nonce, data, associated_data)
        return ciphertext, nonce

    @staticmethod
    def decrypt_data(ciphertext: bytes, nonce: bytes, key: bytes, associated_data: bytes | None = None) -> bytes:
        """使用AES-GCM解密数据 / Decrypt ciphertext produced by AES-GCM."""
        aesgcm = AESGCM(key)
        return aesgcm.decrypt(nonce, ciphertext, associated_data)

    @staticmethod
    def generate_signature_keypair() -> Tuple[ed25519.Ed25519PrivateKey, bytes]:
        """生成Ed25519签名密钥对 / Generate an Ed25519 signing key pair."""
        private_key = ed25519.Ed25519PrivateKey.generate()
        public_key = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return private_key, public_key

    @staticmethod
    def generate_kem_keypair() -> Tuple[x25519.X25519PrivateKey, bytes]:
        """生成X25519密钥对用于KEM封装 / Generate an X25519 key pair for KEM encapsulation."""
        private_key = x25519.X25519PrivateKey.generate()
        public_key = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return private_key, public_key

    @staticmethod
    def encapsulate_key(receiver_public_bytes: bytes, context: bytes) -> Tuple[bytes, bytes]:
        """使用接收者公钥封装对称密钥，返回(对称密钥, 发送方临时公钥)."""
        receiver_public = x25519.X25519PublicKey.from_public_bytes(receiver_public_bytes)
        ephemeral_private = x25519.X25519PrivateKey.generate()
        shared_secret = ephemeral_private.exchange(receiver_public)
        symmetric_key = CryptoManager._derive_symmetric_key(shared_secret, context)
        ephemeral_public_bytes = ephemeral_private.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return symmetric_key, ephemeral_public_bytes

    @staticmethod
    def decapsulate_key(ephemeral_public_bytes: bytes, receiver_private: x25519.X25519PrivateKey, context: bytes) -> bytes:
        """解封装对称密钥 / Decapsulate the symmetric key using receiver's private key."""
        ephemeral_public = x25519.X25519PublicKey.from_public_bytes(ephemeral_public_bytes)
        shared_secret = receiver_private.exchange(ephemeral_public)
        return CryptoManager._derive_symmetric_key(shared_secret, context)

    @staticmethod
    def sign_message(message: bytes, signing_private: ed25519.Ed25519PrivateKey) -> bytes:
        """对消息进行签名 / Sign a message with Ed25519."""
        return signing_private.sign(message)

    @staticmethod
    def verify_signature(signature: bytes, message: bytes, signing_public_bytes: bytes) -> bool:
        """验证Ed25519签名，返回是否有效."""
        try:
            public_key = ed25519.Ed25519PublicKey.from_public_bytes(signing_public_bytes)
            public_key.verify(signature, message)
            return True
        except InvalidSignature:
            return False

    @staticmethod
    def serialize_row_package(package: TripleRowPackage) -> bytes:
        """序列化三元组份额包用于签名 / Serialize a row package deterministically for signing."""
        payload = {
            'receiver_id': package.receiver_id,
            'triple_id': package.triple_id,
            'nonce': base64.b64encode(package.nonce).decode(),
            'encrypted_data': base64.b64encode(package.encrypted_data).decode(),
            'kem_public': base64.b64encode(package.kem_public).decode(),
        }
        return json.dumps(payload, sort_keys=True).encode()

    @staticmethod
    def row_context(receiver_id: int, triple_id: int) -> bytes:
        return f"beaver-row-{receiver_id}-{triple_id}".encode()

    @staticmethod
    def seal_row(
        row: bytes,
        receiver_id: int,
        triple_id: int,
        receiver_kem_public: bytes,
        signing_private: ed25519.Ed25519PrivateKey,
    ) -> TripleRowPackage:
        """Encrypt one encoded triple row to its owner and sign the package."""
        context = CryptoManager.row_context(receiver_id, triple_id)
        symmetric_key, kem_public = CryptoManager.encapsulate_key(receiver_kem_public, context)
        encrypted_data, nonce = CryptoManager.encrypt_data(row, symmetric_key, context)

        package = TripleRowPackage(
            receiver_id=receiver_id,
            triple_id=triple_id,
            encrypted_data=encrypted_data,
            nonce=nonce,
            kem_public=kem_public,
            signature=b"",
        )
        package.signature = CryptoManager.sign_message(
            CryptoManager.serialize_row_package(package), signing_private
        )
        return package

    @staticmethod
    def open_row(
        package: TripleRowPackage,
        receiver_private: x25519.X25519PrivateKey,
        dealer_public: bytes,
    ) -> bytes:
        """Verify the dealer's signature and decrypt the row; tampering raises ``SerializationError``."""
        serialized = CryptoManager.serialize_row_package(package)
        if not CryptoManager.verify_signature(package.signature, serialized, dealer_public):
            raise SerializationError(f"Invalid dealer signature on row for triple {package.triple_id}")

        context = CryptoManager.row_context(package.receiver_id, package.triple_id)
        symmetric_key = CryptoManager.decapsulate_key(package.kem_public, receiver_private, context)
        try:
            return CryptoManager.decrypt_data(package.encrypted_data, package.nonce, symmetric_key, context)
        except InvalidTag as exc:
            raise SerializationError(f"Row for triple {package.triple_id} failed authentication") from exc

    @staticmethod
    def _derive_symmetric_key(shared_secret: bytes, context: bytes) -> bytes:
        """通过HKDF从共享秘密导出对称密钥."""
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=context or CryptoManager.KEM_INFO,
            backend=default_backend(),
        )
        return hkdf.derive(shared_secret)
