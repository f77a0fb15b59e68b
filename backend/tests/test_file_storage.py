from storage.file_storage import FileStorage


def test_paths_are_relative_to_media_root(tmp_path):
    storage = FileStorage(str(tmp_path))

    tpl = storage.save_template_image("tpl-1", "Banner.JPG", b"jpeg-bytes")
    out = storage.save_generation_image("gen-1", b"png-bytes")
    subj = storage.save_subject_image("gen-1", "main", b"subject", "me.webp")

    assert tpl == "templates/tpl-1.jpg"
    assert out == "generations/gen-1.png"
    assert subj == "generations/gen-1/subjects/main.webp"
    assert storage.read_bytes(tpl) == b"jpeg-bytes"
    assert storage.file_exists(out)
    assert storage.get_absolute_path(out) == tmp_path / "generations" / "gen-1.png"


def test_intermediate_artifacts(tmp_path):
    storage = FileStorage(str(tmp_path))
    assert storage.list_intermediate("gen-1") == []

    storage.save_intermediate_image("gen-1", "mask-background", b"mask")
    path = storage.save_intermediate_text("gen-1", "prompt-background", "Replace ONLY ...")

    assert storage.list_intermediate("gen-1") == ["mask-background.png", "prompt-background.txt"]
    assert storage.read_bytes(path).decode("utf-8") == "Replace ONLY ..."


def test_delete_generation_files(tmp_path):
    storage = FileStorage(str(tmp_path))
    storage.save_generation_image("gen-1", b"png")
    storage.save_intermediate_image("gen-1", "pass-1-background", b"png")

    assert storage.delete_generation_files("gen-1") is True
    assert storage.list_intermediate("gen-1") == []
    assert not storage.file_exists("generations/gen-1.png")
    assert storage.delete_generation_files("gen-1") is False


def test_delete_file(tmp_path):
    storage = FileStorage(str(tmp_path))
    rel = storage.save_template_image("tpl-1", "a.png", b"x")
    assert storage.delete_file(rel) is True
    assert storage.delete_file(rel) is False


def test_generation_output_extension_follows_format(tmp_path):
    storage = FileStorage(str(tmp_path))
    jpg = storage.save_generation_image("gen-1", b"jpeg", "jpeg")
    webp = storage.save_generation_image("gen-2", b"webp", "webp")

    assert jpg == "generations/gen-1.jpg"
    assert webp == "generations/gen-2.webp"
    assert storage.media_type(jpg) == "image/jpeg"
    assert storage.media_type(webp) == "image/webp"
    assert storage.media_type("generations/gen-3.png") == "image/png"

    assert storage.delete_generation_files("gen-2") is True
    assert not storage.file_exists(webp)
    assert storage.file_exists(jpg)
