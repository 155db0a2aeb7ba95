import main


def test_missing_file_exits_with_error(tmp_path):
    assert main.main([str(tmp_path / "missing.png"), "--output-dir", str(tmp_path)]) == 1


def test_folder_without_model_assets_exits_with_error(tmp_path, monkeypatch, no_dotenv):
    monkeypatch.setenv("MODEL_ASSETS_DIR", str(tmp_path / "no-assets"))
    (tmp_path / "gallery").mkdir()

    assert main.main([str(tmp_path / "gallery"), "--output-dir", str(tmp_path / "out")]) == 1
