from pathlib import Path

import pytest

import launcher


def test_parser_subcommands():
    parser = launcher.build_parser()

    args = parser.parse_args(["audit", "https://site.test/", "--mode", "quick", "--max-pages", "5", "--no-ai"])
    assert (args.command, args.url, args.mode, args.max_pages, args.no_ai) == ("audit", "https://site.test/", "quick", 5, True)

    args = parser.parse_args(["probe", "targets.json", "--select-targets", "--output-dir", "out"])
    assert args.input == Path("targets.json")
    assert args.mode == "deep"
    assert args.select_targets
    assert args.output_dir == Path("out")

    with pytest.raises(SystemExit):
        parser.parse_args(["probe", "targets.json", "--mode", "thorough"])


async def test_invalid_start_url_exits_with_input_error(tmp_path):
    code = await launcher.main(["audit", "ftp://site.test/", "--output-dir", str(tmp_path), "--no-ai"])
    assert code == launcher.EXIT_INPUT_ERROR


async def test_missing_target_file_exits_with_input_error(tmp_path):
    code = await launcher.main(["probe", str(tmp_path / "missing.json"), "--output-dir", str(tmp_path), "--no-ai"])
    assert code == launcher.EXIT_INPUT_ERROR


def test_spa_flag_turns_on_interactions(tmp_path):
    parser = launcher.build_parser()
    common = ["--config", str(tmp_path / "config.json"), "--output-dir", str(tmp_path)]

    args = parser.parse_args(["crawl", "https://site.test/", "--spa", *common])
    assert launcher.load_config(args).crawl.spa_interactions is True

    args = parser.parse_args(["audit", "https://site.test/", *common])
    assert launcher.load_config(args).crawl.spa_interactions is False

    args = parser.parse_args(["probe", "targets.json", *common])
    assert launcher.load_config(args).crawl.spa_interactions is False
