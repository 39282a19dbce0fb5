import io

import pytest
from PIL import Image

from pipelines.documents import (
    MAX_SIDE,
    MAX_UPLOAD_BYTES,
    attach_document,
    decode_data_url,
    make_thumbnail,
    normalize_image,
    remove_document,
    to_data_url,
)
from pipelines.errors import NotFoundError, ValidationError
from pipelines.workflow import create_patient


def _image_bytes(size=(2048, 512), mode="L", fmt="JPEG") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, color=128).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def patient(noon):
    return create_patient({"name": "Jean Dupont", "date_of_birth": "1965-08-15"}, patient_id="PAT001", now=noon)


def test_images_are_stored_as_bounded_rgb_png(patient):
    doc = attach_document(patient, "scan.jpg", "image/jpeg", _image_bytes())
    assert doc.file_type == "image/png"
    mime, raw = decode_data_url(doc.data_url)
    assert mime == "image/png"
    image = Image.open(io.BytesIO(raw))
    assert image.mode == "RGB"
    assert image.size == (MAX_SIDE, 256)
    assert patient.documents == [doc]


def test_small_images_keep_their_size():
    image = Image.open(io.BytesIO(normalize_image(_image_bytes((40, 30), "RGBA", "PNG"))))
    assert image.size == (40, 30)
    assert image.mode == "RGB"


def test_other_files_are_stored_as_uploaded(patient):
    doc = attach_document(patient, "ordonnance.pdf", "application/pdf", b"%PDF-1.4 minimal")
    assert decode_data_url(doc.data_url) == ("application/pdf", b"%PDF-1.4 minimal")
    assert make_thumbnail(doc.data_url) is None


def test_thumbnail_of_an_image(patient):
    doc = attach_document(patient, "scan.png", "image/png", _image_bytes(fmt="PNG"))
    thumb = Image.open(io.BytesIO(make_thumbnail(doc.data_url)))
    assert max(thumb.size) == 256


def test_rejected_uploads(patient):
    with pytest.raises(ValidationError):
        attach_document(patient, "empty.txt", "text/plain", b"")
    with pytest.raises(ValidationError):
        attach_document(patient, "huge.bin", "application/octet-stream", b"0" * (MAX_UPLOAD_BYTES + 1))
    with pytest.raises(ValidationError):
        attach_document(patient, "fake.png", "image/png", b"not an image")
    assert patient.documents == []


def test_oversized_images_are_refused(patient, monkeypatch):
    data = _image_bytes((40, 40), "RGB", "PNG")
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    with pytest.raises(ValidationError) as exc:
        attach_document(patient, "bomb.png", "image/png", data)
    assert exc.value.messages == ["L'image est trop grande."]
    assert patient.documents == []


def test_data_url_parsing():
    assert decode_data_url(to_data_url(b"abc", "text/plain")) == ("text/plain", b"abc")
    with pytest.raises(ValueError):
        decode_data_url("https://example.org/x.png")
    with pytest.raises(ValueError):
        decode_data_url("data:text/plain;base64,@@@")


def test_remove_document(patient):
    doc = attach_document(patient, "a.txt", "text/plain", b"a")
    assert not remove_document(patient, "missing")
    assert remove_document(patient, doc.id)
    assert patient.documents == []


def test_database_documents(db):
    patient = db.create_patient({"name": "Marie Curie", "date_of_birth": "1967-11-07"})
    doc = db.attach_document(patient.id, "note.txt", "text/plain", b"hello")
    assert db.patients.get(patient.id).documents[0].id == doc.id
    db.remove_document(patient.id, doc.id)
    assert db.patients.get(patient.id).documents == []
    with pytest.raises(NotFoundError):
        db.remove_document(patient.id, doc.id)
