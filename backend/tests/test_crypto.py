from stocksync.utils import crypto


def test_encrypted_values_round_trip():
    token = crypto.encrypt("access-token-value")

    assert crypto.is_encrypted(token)
    assert "access-token-value" not in token
    assert crypto.decrypt(token) == "access-token-value"
    assert crypto.encrypt(token) == token


def test_plain_text_passes_through_decrypt():
    assert crypto.decrypt("legacy-plain-token") == "legacy-plain-token"
    assert crypto.decrypt(None) is None


def test_tampered_value_decrypts_to_none():
    token = crypto.encrypt("access-token-value")
    tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")

    assert crypto.decrypt(tampered) is None


def test_model_stores_tokens_encrypted(db, account):
    assert crypto.is_encrypted(account._access_token)
    assert crypto.is_encrypted(account._client_secret)
    assert account.access_token == "access-1"
