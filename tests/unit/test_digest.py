import pytest
from stencil_core.digest import (
    ChecksumSpec,
    compute_digest,
    content_hash,
    normalize_checksum,
    parse_checksum_spec,
    verify_checksum,
)
from stencil_core.errors import (
    ChecksumAlgorithmError,
    ChecksumFormatError,
    ChecksumHexError,
    ChecksumMismatchError,
)

EMPTY_DIGESTS = {
    "blake3": "af1349b9f5f9a1a6a0404dea36dcc9499bcb25c9adc112b7cc9a93cae41f3262",
    "sha256": "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855",
    "md5": "d41d8cd98f00b204e9800998ecf8427e",
}


@pytest.mark.parametrize("algorithm", sorted(EMPTY_DIGESTS))
def test_known_empty_digests(algorithm):
    assert compute_digest(b"", algorithm) == EMPTY_DIGESTS[algorithm]


@pytest.mark.parametrize("algorithm", ["blake3", "sha256", "md5"])
def test_verify_round_trip_and_single_char_flip(algorithm):
    content = b"content"
    digest = compute_digest(content, algorithm)
    verify_checksum(content, f"{algorithm}:{digest}")

    flipped = ("0" if digest[0] != "0" else "1") + digest[1:]
    with pytest.raises(ChecksumMismatchError) as exc:
        verify_checksum(content, f"{algorithm}:{flipped}")
    assert exc.value.actual == digest


def test_empty_spec_always_passes():
    verify_checksum(b"anything", "")
    verify_checksum(b"anything", "   ")
    assert parse_checksum_spec("") is None


def test_spec_is_case_insensitive():
    digest = compute_digest(b"x", "sha256").upper()
    verify_checksum(b"x", f"SHA256:{digest}")
    assert parse_checksum_spec(f" SHA256:{digest} ") == ChecksumSpec("sha256", digest.lower())


@pytest.mark.parametrize("spec", ["sha256", ":abcd", "sha256:", " : "])
def test_format_errors(spec):
    with pytest.raises(ChecksumFormatError):
        parse_checksum_spec(spec)


@pytest.mark.parametrize("spec", ["sha256:xyz0", "sha256:abc", "md5:ab cd"])
def test_hex_errors(spec):
    with pytest.raises(ChecksumHexError):
        parse_checksum_spec(spec)


def test_unknown_algorithm():
    with pytest.raises(ChecksumAlgorithmError) as exc:
        parse_checksum_spec("sha1:abcd")
    assert exc.value.algorithm == "sha1"


def test_normalize_checksum_lowercases():
    assert normalize_checksum("MD5:ABCD") == "md5:abcd"
    assert normalize_checksum("") == ""


def test_content_hash_is_sha256():
    assert content_hash(b"") == EMPTY_DIGESTS["sha256"]


def test_algorithm_is_checked_before_hex():
    with pytest.raises(ChecksumAlgorithmError):
        parse_checksum_spec("sha1:zz")
