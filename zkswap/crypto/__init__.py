from .musig import SignatureScheme, JointSigner, Ed25519Musig, MusigError

__all__ = ["SignatureScheme", "JointSigner", "Ed25519Musig", "MusigError"]
