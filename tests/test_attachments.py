import io
from types import SimpleNamespace

import pytest

from dxchat.attachments import AttachmentError, encode_attachment, is_accepted, read_uploads


def test_image_is_base64_encoded_without_prefix():
    att = encode_attachment(b"hello", "image/png", "ecg.png")

    assert att.data == "aGVsbG8="
    assert att.uri == "data:image/png;base64,aGVsbG8="
    assert att.name == "ecg.png"
    assert att.is_image


def test_pdf_with_parameters_is_accepted():
    att = encode_attachment(b"%PDF-1.7", "Application/PDF; charset=binary", "labs.pdf")
    assert att.mime_type == "application/pdf"
    assert not att.is_image


@pytest.mark.parametrize("mime", ["text/plain", "application/zip", "", None])
def test_other_types_are_rejected(mime):
    with pytest.raises(AttachmentError, match="unsupported file type"):
        encode_attachment(b"data", mime, "notes")


def test_empty_file_is_rejected():
    with pytest.raises(AttachmentError, match="empty"):
        encode_attachment(b"", "image/png", "blank.png")


def test_oversized_file_is_rejected():
    upload = SimpleNamespace(filename="big.png", content_type="image/png", file=io.BytesIO(b"x" * 10))
    with pytest.raises(AttachmentError, match="larger than"):
        read_uploads([upload], max_bytes=4)


def test_read_uploads_skips_unnamed_parts():
    uploads = [
        SimpleNamespace(filename="", content_type="application/octet-stream", file=io.BytesIO(b"")),
        SimpleNamespace(filename="xray.jpg", content_type="image/jpeg", file=io.BytesIO(b"\xff\xd8\xff")),
    ]

    attachments = read_uploads(uploads)

    assert [a.name for a in attachments] == ["xray.jpg"]
    assert attachments[0].data == "/9j/"


def test_accepted_types():
    assert is_accepted("image/webp")
    assert is_accepted("application/pdf")
    assert not is_accepted("imagepng")
