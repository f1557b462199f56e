import json

from click.testing import CliRunner

from cli import cli
from conftest import page_texts


def parse_json(output):
    return json.loads(output[output.index("{\n"):])


def test_profiles_json():
    result = CliRunner().invoke(cli, ["profiles", "-j"])

    assert result.exit_code == 0
    names = [p["name"] for p in json.loads(result.output)]
    assert "balanced" in names
    assert len(names) == 19


def test_profiles_table():
    result = CliRunner().invoke(cli, ["profiles"])

    assert result.exit_code == 0
    assert "minimum_size" in result.output


def test_compress_json(image_pdf_file, tmp_path):
    output = tmp_path / "small.pdf"
    result = CliRunner().invoke(cli, [
        "compress", str(image_pdf_file),
        "-o", str(output),
        "--profile", "minimum-size",
        "--mode", "parallel",
        "-j",
    ])

    assert result.exit_code == 0, result.output
    data = parse_json(result.output)
    assert data["profile"] == "minimum_size"
    assert data["mode"] == "parallel"
    assert data["output_path"] == str(output)
    assert output.stat().st_size == data["compressed_size"]
    assert page_texts(output.read_bytes()) == ["Page 1", "Page 2", "Page 3"]


def test_compress_with_custom_dpi(image_pdf_file, tmp_path):
    output = tmp_path / "small.pdf"
    result = CliRunner().invoke(cli, [
        "compress", str(image_pdf_file),
        "-o", str(output),
        "--profile", "minimum_size",
        "--max-dpi", "250",
        "-j",
    ])

    assert result.exit_code == 0, result.output
    assert parse_json(result.output)["profile"] == "custom"


def test_compress_unknown_profile(image_pdf_file):
    result = CliRunner().invoke(cli, ["compress", str(image_pdf_file), "--profile", "nope"])

    assert result.exit_code == 1
    assert "Unknown profile" in result.output


def test_compress_malformed_file(tmp_path):
    broken = tmp_path / "broken.pdf"
    broken.write_bytes(b"not a pdf " * 200)

    result = CliRunner().invoke(cli, ["compress", str(broken), "-o", str(tmp_path / "out.pdf")])

    assert result.exit_code == 1
    assert "Error" in result.output
    assert not (tmp_path / "out.pdf").exists()


def test_split_json(image_pdf_file, tmp_path):
    output_dir = tmp_path / "parts"
    result = CliRunner().invoke(cli, [
        "split", str(image_pdf_file),
        "--max-size", "100KB",
        "-d", str(output_dir),
        "-j",
    ])

    assert result.exit_code == 0, result.output
    data = parse_json(result.output)
    assert data["part_count"] == 3
    assert data["oversized_parts"] == [1, 2, 3]
    assert sorted(p.name for p in output_dir.iterdir()) == ["scan_001.pdf", "scan_002.pdf", "scan_003.pdf"]


def test_split_invalid_size(image_pdf_file):
    result = CliRunner().invoke(cli, ["split", str(image_pdf_file), "--max-size", "lots"])

    assert result.exit_code == 1
    assert "Invalid size format" in result.output


def test_benchmark_json(tmp_path, image_pdf):
    input_dir = tmp_path / "in"
    input_dir.mkdir()
    (input_dir / "a.pdf").write_bytes(image_pdf)

    result = CliRunner().invoke(cli, [
        "benchmark", str(input_dir),
        "-d", str(tmp_path / "out"),
        "--profile", "minimum_size",
        "-j",
    ])

    assert result.exit_code == 0, result.output
    data = parse_json(result.output)
    assert data["total"] == 1
    assert (tmp_path / "out" / "compressed_a.pdf").exists()
