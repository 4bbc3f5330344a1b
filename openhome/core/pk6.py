"""
PK6 record decoding for OpenHome.

Implements decryption, block unshuffling and checksum verification of the
232-byte Pokemon records stored in the PC boxes of Pokemon X and Y saves.

PK6 Structure:
  - 232 bytes total (0xE8)
  - 0x00: encryption constant, the record seed (4 bytes, unencrypted)
  - 0x04: sanity word (2 bytes, unencrypted)
  - 0x06: checksum (2 bytes, unencrypted)
  - 0x08: 224 bytes of encrypted data (4 blocks × 56 bytes)

Encryption:
  - Each 16-bit little-endian word of the payload is XORed with the upper
    half of the next LCRNG value, seeded by the encryption constant
  - The four blocks are stored in one of 24 orders, selected by
    bits 13-17 of the encryption constant (mod 24)
  - Checksum: 16-bit sum of the decrypted payload words
"""

import struct
import hashlib
import logging
from typing import Dict, List, Optional, Any, Tuple
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────────────────────

PK6_SIZE            = 0xE8      # 232 bytes per record
PK6_HEADER_SIZE     = 0x08      # Unencrypted header
PK6_DATA_SIZE       = 0xE0      # 224 bytes encrypted (4 × 56)
PK6_BLOCK_SIZE      = 0x38      # 56 bytes per block
PK6_BLOCK_COUNT     = 4

PK6_SEED_OFF        = 0x00
PK6_SANITY_OFF      = 0x04
PK6_CHECKSUM_OFF    = 0x06

# Payload-relative offsets (payload starts at 0x08 of the record)
SPECIES_OFF         = 0x00
TRAINER_ID_OFF      = 0x04
SECRET_ID_OFF       = 0x06
PERSONALITY_OFF     = 0x10
NATURE_OFF          = 0x14

LCRNG_MULT          = 0x41C64E6D
LCRNG_ADD           = 0x6073

MAX_SPECIES         = 721       # National dex size as of X/Y
RARE_THRESHOLD      = 16        # Gen 6 shiny threshold (1 in 4096)

EMPTY_RECORD        = bytes(PK6_SIZE)

NATURES = [
    "Hardy","Lonely","Brave","Adamant","Naughty",
    "Bold","Docile","Relaxed","Impish","Lax",
    "Timid","Hasty","Serious","Jolly","Naive",
    "Modest","Mild","Quiet","Bashful","Rash",
    "Calm","Gentle","Sassy","Careful","Quirky",
]

# Block order lookup (order selector % 24)
# Each letter is a logical block: A=Core, B=Moves, C=Origin, D=Trainer
# and the string gives the layout of the shuffled payload.
BLOCK_ORDER = [
    "ABCD","ABDC","ACBD","ACDB","ADBC","ADCB",
    "BACD","BADC","BCAD","BCDA","BDAC","BDCA",
    "CABD","CADB","CBAD","CBDA","CDAB","CDBA",
    "DABC","DACB","DBAC","DBCA","DCAB","DCBA",
]

# Inverse view of BLOCK_ORDER: entry[logical block] = shuffled position.
BLOCK_POSITION: List[Tuple[int, ...]] = [
    tuple(order.index(letter) for letter in "ABCD") for order in BLOCK_ORDER
]


# ── Data Classes ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DecodedRecord:
    """
    Result of decoding one 232-byte record.
    Produced for any well-sized input; checksum_ok says whether it is real.
    """
    seed:               int
    declared_checksum:  int
    computed_checksum:  int
    checksum_ok:        bool
    identity_code:      int
    nature_index:       int
    personality_value:  int
    trainer_id:         int
    secret_id:          int
    is_rare:            bool
    digest:             str = ""

    @property
    def species_plausible(self) -> bool:
        return 1 <= self.identity_code <= MAX_SPECIES

    @property
    def is_present(self) -> bool:
        """Checksum valid, species in range and a nonzero personality value."""
        return (self.checksum_ok
                and self.species_plausible
                and self.personality_value != 0)

    @property
    def nature_name(self) -> str:
        if self.nature_index < len(NATURES):
            return NATURES[self.nature_index]
        return f"Nature #{self.nature_index}"

    @property
    def preview(self) -> str:
        return (f"PID={self.personality_value:x} "
                f"SPEC={self.identity_code} NAT={self.nature_index}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'seed':              self.seed,
            'declared_checksum': self.declared_checksum,
            'computed_checksum': self.computed_checksum,
            'checksum_ok':       self.checksum_ok,
            'species':           self.identity_code,
            'nature':            self.nature_index,
            'nature_name':       self.nature_name,
            'pid':               self.personality_value,
            'tid':               self.trainer_id,
            'sid':               self.secret_id,
            'shiny':             self.is_rare,
            'preview':           self.preview,
            'hash':              self.digest,
        }


# ── Primitives ─────────────────────────────────────────────────────────────────

def lcrng_next(seed: int) -> int:
    """Advance the record keystream by one step."""
    return (seed * LCRNG_MULT + LCRNG_ADD) & 0xFFFFFFFF


def crypt_payload(payload: bytes, seed: int) -> bytes:
    """
    XOR the payload with the keystream seeded by `seed`.

    The keystream advances once per 16-bit word, in order, across the whole
    payload. The operation is its own inverse.
    """
    count = len(payload) // 2
    words = struct.unpack(f'<{count}H', payload[:count * 2])
    out = []
    for word in words:
        seed = lcrng_next(seed)
        out.append(word ^ (seed >> 16))
    return struct.pack(f'<{count}H', *out)


def order_selector(seed: int) -> int:
    """Block order selector taken from bits 13-17 of the seed."""
    return (seed >> 13) & 0x1F


def unshuffle_blocks(payload: bytes, selector: int) -> bytes:
    """Reassemble the four 56-byte blocks into canonical A, B, C, D order."""
    if len(payload) != PK6_DATA_SIZE:
        raise ValueError(f"Payload must be {PK6_DATA_SIZE} bytes, got {len(payload)}")
    positions = BLOCK_POSITION[selector % 24]
    return b''.join(
        payload[pos * PK6_BLOCK_SIZE:(pos + 1) * PK6_BLOCK_SIZE]
        for pos in positions
    )


def shuffle_blocks(payload: bytes, selector: int) -> bytes:
    """Inverse of unshuffle_blocks: lay canonical blocks out in stored order."""
    if len(payload) != PK6_DATA_SIZE:
        raise ValueError(f"Payload must be {PK6_DATA_SIZE} bytes, got {len(payload)}")
    order = BLOCK_ORDER[selector % 24]
    return b''.join(
        payload[(ord(letter) - ord('A')) * PK6_BLOCK_SIZE:
                (ord(letter) - ord('A') + 1) * PK6_BLOCK_SIZE]
        for letter in order
    )


def checksum16(payload: bytes) -> int:
    """Sum of little-endian 16-bit words, modulo 65536."""
    count = len(payload) // 2
    return sum(struct.unpack(f'<{count}H', payload[:count * 2])) & 0xFFFF


def is_empty_slot(data: bytes) -> bool:
    """True when every byte of a 232-byte slot is zero."""
    return data == EMPTY_RECORD


def is_rare(personality_value: int, trainer_id: int, secret_id: int) -> bool:
    pv_high = (personality_value >> 16) & 0xFFFF
    pv_low  = personality_value & 0xFFFF
    return (pv_high ^ pv_low ^ trainer_id ^ secret_id) < RARE_THRESHOLD


# ── Decoder ────────────────────────────────────────────────────────────────────

def decode_record(data: bytes) -> Optional[DecodedRecord]:
    """
    Decode a single 232-byte record.

    Returns None only when the input is not exactly 232 bytes. Any other
    input yields a DecodedRecord; garbage simply comes back with
    checksum_ok = False.
    """
    if data is None or len(data) != PK6_SIZE:
        return None

    try:
        seed     = struct.unpack_from('<I', data, PK6_SEED_OFF)[0]
        declared = struct.unpack_from('<H', data, PK6_CHECKSUM_OFF)[0]

        decrypted = crypt_payload(bytes(data[PK6_HEADER_SIZE:PK6_SIZE]), seed)
        computed  = checksum16(decrypted)
        payload   = unshuffle_blocks(decrypted, order_selector(seed))

        species     = struct.unpack_from('<H', payload, SPECIES_OFF)[0]
        trainer_id  = struct.unpack_from('<H', payload, TRAINER_ID_OFF)[0]
        secret_id   = struct.unpack_from('<H', payload, SECRET_ID_OFF)[0]
        personality = struct.unpack_from('<I', payload, PERSONALITY_OFF)[0]
        nature      = payload[NATURE_OFF]
    except (struct.error, IndexError, ValueError) as e:
        logger.debug(f"PK6 decode error: {e}")
        return None

    return DecodedRecord(
        seed=seed,
        declared_checksum=declared,
        computed_checksum=computed,
        checksum_ok=computed == declared,
        identity_code=species,
        nature_index=nature,
        personality_value=personality,
        trainer_id=trainer_id,
        secret_id=secret_id,
        is_rare=is_rare(personality, trainer_id, secret_id),
        digest=hashlib.sha1(bytes(data)).hexdigest()[:12],
    )


def decode_record_file(data: bytes) -> Optional[DecodedRecord]:
    """Decode a standalone .pk6 file. Only fully valid records are returned."""
    record = decode_record(data)
    if record is None or not record.is_present:
        return None
    return record
