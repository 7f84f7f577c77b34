from httpsend.http.client.response import ResponseRecord, status_line


def test_status_line_uses_registered_phrase():
    assert status_line(404) == "404 Not Found"
    assert status_line(299) == "299"
    assert status_line(200, "Fine") == "200 Fine"


def test_repeated_headers_are_folded():
    class MultiHeaders:
        def items(self):
            return [("Set-Cookie", "a=1"), ("set-cookie", "b=2"), ("X", "y")]

    record = ResponseRecord.from_exchange(200, MultiHeaders(), b"")
    assert record.headers["set-cookie"] == "a=1, b=2"
    assert record.headers["x"] == "y"


def test_to_value_uses_text_when_not_decoded():
    record = ResponseRecord.from_exchange(
        200, {"Content-Type": "text/plain; charset=latin-1"}, "caf\xe9".encode("latin-1")
    )
    value = record.to_value()

    assert value["body"] == "caf\xe9"
    assert value["raw_body"] == "caf\xe9"
    assert value["status"] == "200 OK"
    assert "error" not in value


def test_to_value_copies_decoded_body():
    record = ResponseRecord.from_exchange(200, {}, b'{"a": [1]}').with_body({"a": [1]})

    value = record.to_value()
    value["body"]["a"].append(2)

    assert record.body == {"a": [1]}
    assert record.to_value()["body"] == {"a": [1]}


def test_error_record_shape():
    record = ResponseRecord.from_error({"code": "c", "message": "m"}, url="http://x")
    value = record.to_value()
    assert value["status_code"] == 0
    assert value["error"] == {"code": "c", "message": "m"}


def test_decoded_null_is_not_replaced_by_text():
    record = ResponseRecord.from_exchange(200, {}, b"null").with_body(None)

    assert record.decoded
    assert record.to_value()["body"] is None


def test_undecoded_record_renders_text_body():
    record = ResponseRecord.from_exchange(200, {}, b"null")

    assert not record.decoded
    assert record.to_value()["body"] == "null"
