"""
Client-side feature encryption using LightPHE Paillier.

The client only ever holds the runtime's public key: it can encrypt its
transaction features but cannot decrypt anything.
"""
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

import numpy as np
from lightphe import LightPHE


class FeatureEncryptor:
    """
    Encrypts (amount, frequency, counterparty_risk) feature triples.

    Responsible for:
    - Loading the network public key
    - Encrypting integer features
    - Batch encryption for bulk submission
    """

    NUM_FEATURES = 3

    def __init__(
        self,
        public_key: Optional[dict] = None,
        key_file: Optional[Union[str, Path]] = None,
    ):
        """
        Initialize the encryptor.

        Args:
            public_key: Public key dict as served by the runtime
            key_file: Path to an exported public key
        """
        if public_key is None and key_file is None:
            raise ValueError("FeatureEncryptor needs a public key or a key file")

        keys = None
        if public_key is not None:
            keys = public_key if "public_key" in public_key else {"public_key": public_key}

        self._cs = LightPHE(
            algorithm_name="Paillier",
            keys=keys,
            key_file=str(key_file) if key_file is not None else None,
        )

    @property
    def has_private_key(self) -> bool:
        """Always False for a well-formed client."""
        return self._cs.cs.keys.get("private_key") is not None

    def encrypt_value(self, value: int) -> Any:
        """
        Encrypt one non-negative integer feature.

        Returns:
            LightPHE ciphertext
        """
        if isinstance(value, (bool, float)) or int(value) != value or value < 0:
            raise ValueError(f"Features must be non-negative integers, got {value!r}")
        return self._cs.encrypt(int(value))

    def encrypt_features(self, amount: int, frequency: int, counterparty_risk: int) -> List[Any]:
        """Encrypt one feature triple, in (amount, frequency, risk) order."""
        return [self.encrypt_value(v) for v in (amount, frequency, counterparty_risk)]

    def encrypt_batch(
        self,
        rows: Union[Sequence[Sequence[int]], np.ndarray],
        num_workers: int = 1,
    ) -> List[List[Any]]:
        """
        Encrypt many feature triples.

        Args:
            rows: Array-like of shape (n, 3)
            num_workers: Threads to use (1 = sequential)

        Returns:
            One list of three ciphertexts per row
        """
        rows = np.asarray(rows, dtype=np.int64)
        if rows.ndim != 2 or rows.shape[1] != self.NUM_FEATURES:
            raise ValueError(f"Expected shape (n, 3), got {rows.shape}")

        triples = [tuple(int(v) for v in row) for row in rows]
        if num_workers <= 1:
            return [self.encrypt_features(*t) for t in triples]

        with ThreadPoolExecutor(max_workers=num_workers) as executor:
            return list(executor.map(lambda t: self.encrypt_features(*t), triples))
