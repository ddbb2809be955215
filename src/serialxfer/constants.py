from __future__ import annotations

SOH = 0x01
EOT = 0x04
ACK = 0x06
NAK = 0x15
CAN = 0x18
CRC_REQUEST = 0x43  # 'C'

PAD_BYTE = 0x1A
BLOCK_SIZE = 128
CRC16_POLY = 0x1021

HANDSHAKE_TIMEOUT_MS = 10_000
BYTE_TIMEOUT_MS = 10_000
RESPONSE_TIMEOUT_MS = 1_000
RECEIVE_TIMEOUT_MS = 3_000
ACK_GRACE_MS = 20

MAX_BLOCK_RETRIES = 10
MAX_HANDSHAKE_RETRIES = 10

CANCEL_ATTEMPTS = 30
CANCEL_INTERVAL_MS = 100

DEFAULT_CHUNK_SIZE = 64
DEFAULT_DELAY_MS = 10
DEGRADED_CHUNK_SIZE = 4
DEGRADED_DELAY_MS = 100

DEFAULT_BAUDRATE = 115200
FALLBACK_FILENAME = "received_file.bin"
