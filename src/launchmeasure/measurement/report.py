"""
Reads the MEASUREMENT field out of a raw SEV-SNP attestation report so a
computed launch digest can be compared with it. The report's signature and
certificate chain are not checked here.
"""

REPORT_SIZE = 0x4A0  # 1184 bytes
REPORT_VERSION_START = 0x00
REPORT_VERSION_END = 0x04
REPORT_MEASUREMENT_START = 0x90
REPORT_MEASUREMENT_END = 0xC0
MIN_REPORT_VERSION = 2


def report_measurement(data: bytes) -> bytes:
    """
    Returns the 48-byte launch measurement recorded in *data*.

    Raises:
        ValueError: If *data* is not an SEV-SNP attestation report
    """
    if len(data) < REPORT_SIZE:
        raise ValueError(f"Array size is 0x{len(data):x}, an SEV-SNP attestation report size is 0x{REPORT_SIZE:x}")

    version = int.from_bytes(data[REPORT_VERSION_START:REPORT_VERSION_END], byteorder='little')
    if version < MIN_REPORT_VERSION:
        raise ValueError(f"Report version is lower than {MIN_REPORT_VERSION}: is {version}")

    return bytes(data[REPORT_MEASUREMENT_START:REPORT_MEASUREMENT_END])


def read_report_measurement(path: str) -> bytes:
    with open(path, "rb") as f:
        return report_measurement(f.read())
