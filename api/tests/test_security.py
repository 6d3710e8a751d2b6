from listing_sync.core.security import SignatureCheck, compute_signature, verify_signature

BODY = b'{"type":"INSERT","table":"listings","record":{"id":"1"}}'
SECRET = "whsec-test"


def test_verify_signature_accepts_matching_digest() -> None:
    signature = compute_signature(BODY, SECRET)
    assert verify_signature(BODY, signature, SECRET) is SignatureCheck.AUTHENTIC


def test_verify_signature_accepts_prefixed_uppercase_digest() -> None:
    signature = "sha256=" + compute_signature(BODY, SECRET).upper()
    assert verify_signature(BODY, signature, SECRET) is SignatureCheck.AUTHENTIC


def test_verify_signature_rejects_digest_for_other_body() -> None:
    signature = compute_signature(BODY + b" ", SECRET)
    assert verify_signature(BODY, signature, SECRET) is SignatureCheck.INAUTHENTIC


def test_verify_signature_treats_malformed_signature_as_inauthentic() -> None:
    assert verify_signature(BODY, "abc", SECRET) is SignatureCheck.INAUTHENTIC
    assert verify_signature(BODY, "z" * 64, SECRET) is SignatureCheck.INAUTHENTIC
    assert verify_signature(BODY, "", SECRET) is SignatureCheck.INAUTHENTIC
    assert verify_signature(BODY, None, SECRET) is SignatureCheck.INAUTHENTIC


def test_verify_signature_skips_when_secret_missing(caplog) -> None:
    result = verify_signature(BODY, "anything", None)
    assert result is SignatureCheck.SKIPPED
    assert result.accepted
    assert "without signature verification" in caplog.text
