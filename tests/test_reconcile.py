from __future__ import annotations

import logging

import pytest

from extractocr import (
    Mode,
    TextStore,
    ToolUnavailable,
    DirectoryUnwritable,
    extract_on_item_save,
    reconcile,
)
from extractocr.cli import main, parse_args
from extractocr.utils import TERM_IS_FORMAT_OF

from conftest import BBOX_EMPTY_OUTPUT, FIXED_NOW


def test_creates_local_full_tsv(catalog, item_with_pdf, fake_tools, make_options, base_path):
    stats = reconcile(catalog, make_options(files=["tsv"]), now=FIXED_NOW)

    tsv = base_path / "iiif-search" / "42.full.tsv"
    assert tsv.read_text(encoding="utf-8").splitlines()[0] == "Hello\t1\t100,200,60,28"
    assert stats.total == 1
    assert stats.documents == 1
    assert stats.processed == 1
    assert stats.failed == 0


def test_creates_derivative_media_last(catalog, item_with_pdf, fake_tools, make_options):
    stats = reconcile(catalog, make_options(media=["pdf2xml"]), now=FIXED_NOW)

    media = catalog.media_of(item_with_pdf["item_id"])
    assert [m["source"] for m in media] == ["report.pdf", "page-1.jpg", "report.42.pdf2xml.xml"]
    assert [m["position"] for m in media] == [1, 2, 3]
    assert media[-1]["media_type"] == "application/vnd.pdf2xml+xml"
    assert stats.processed == 1


def test_staging_area_left_empty(catalog, item_with_pdf, fake_tools, make_options, base_path):
    reconcile(catalog, make_options(media=["tsv", "alto"]), now=FIXED_NOW)
    assert list((base_path / "temp" / "extractocr").iterdir()) == []


def test_mode_missing_skips_existing_artifact(
    catalog, item_with_pdf, fake_tools, make_options, base_path
):
    tsv = base_path / "iiif-search" / "42.full.tsv"
    tsv.parent.mkdir(parents=True)
    tsv.write_text("previous\t1\t0,0,1,1\n", encoding="utf-8")

    stats = reconcile(catalog, make_options(files=["tsv"], mode=Mode.MISSING))

    assert stats.skipped == 1
    assert stats.processed == 0
    assert tsv.read_text(encoding="utf-8") == "previous\t1\t0,0,1,1\n"
    assert fake_tools.calls == []


def test_mode_existing_replaces_only_existing(
    catalog, item_with_pdf, fake_tools, make_options, base_path
):
    tsv = base_path / "iiif-search" / "42.full.tsv"
    tsv.parent.mkdir(parents=True)
    tsv.write_text("previous\t1\t0,0,1,1\n", encoding="utf-8")

    stats = reconcile(
        catalog, make_options(files=["tsv", "tsv-by-word"], mode=Mode.EXISTING), now=FIXED_NOW
    )

    assert stats.processed == 1
    assert stats.skipped == 1
    assert tsv.read_text(encoding="utf-8").startswith("Hello\t1\t")
    assert not (base_path / "iiif-search" / "42.by-word.tsv").exists()


def test_mode_all_replaces_derivative(catalog, item_with_pdf, fake_tools, make_options):
    options = make_options(media=["alto"])
    reconcile(catalog, options, now=FIXED_NOW)
    first = catalog.media_of(item_with_pdf["item_id"])[-1]

    reconcile(catalog, options, now=FIXED_NOW)
    media = catalog.media_of(item_with_pdf["item_id"])

    alto = [m for m in media if m["source"] == "report.42.alto.xml"]
    assert len(alto) == 1
    assert alto[0]["id"] != first["id"]
    assert media[-1]["id"] == alto[0]["id"]


def test_existence_checked_per_output_kind(catalog, item_with_pdf, fake_tools, make_options, base_path):
    reconcile(catalog, make_options(files=["pdf2xml"]), now=FIXED_NOW)
    assert (base_path / "pdf2xml" / "42.pdf2xml.xml").exists()

    stats = reconcile(catalog, make_options(files=["pdf2xml"], media=["pdf2xml"], mode=Mode.MISSING))

    assert stats.skipped == 1
    assert stats.processed == 1
    sources = [m["source"] for m in catalog.media_of(item_with_pdf["item_id"])]
    assert "report.42.pdf2xml.xml" in sources


def test_idempotent_runs(catalog, item_with_pdf, fake_tools, make_options, base_path):
    options = make_options(files=["tsv", "tsv-by-word", "pdf2xml"])
    reconcile(catalog, options, now=FIXED_NOW)
    first = {p.name: p.read_bytes() for p in base_path.rglob("*") if p.is_file()}

    reconcile(catalog, options, now=FIXED_NOW)
    second = {p.name: p.read_bytes() for p in base_path.rglob("*") if p.is_file()}

    assert first == second


def test_no_text_layer_leaves_no_artifact(catalog, item_with_pdf, fake_tools, make_options, base_path):
    fake_tools.bbox = BBOX_EMPTY_OUTPUT.encode("utf-8")

    stats = reconcile(catalog, make_options(files=["tsv"], media=["tsv"]))

    assert stats.no_text_layer == [item_with_pdf["pdf_id"]]
    assert stats.failed == 0
    assert stats.processed == 0
    assert not (base_path / "iiif-search" / "42.full.tsv").exists()
    assert len(catalog.media_of(item_with_pdf["item_id"])) == 2


def test_no_text_layer_with_empty_file(catalog, item_with_pdf, fake_tools, make_options, base_path):
    fake_tools.bbox = BBOX_EMPTY_OUTPUT.encode("utf-8")

    stats = reconcile(catalog, make_options(files=["tsv"], create_empty_file=True))

    assert stats.processed == 1
    assert (base_path / "iiif-search" / "42.full.tsv").read_bytes() == b""


def test_missing_pdf_file_is_counted(catalog, fake_tools, make_options, base_path):
    item_id = catalog.add_item()
    pdf_id = catalog.add_media(item_id, "lost.pdf")

    stats = reconcile(catalog, make_options(files=["tsv", "alto"], mode=Mode.MISSING))

    assert stats.no_pdf == [pdf_id]
    assert stats.failed == 2
    assert fake_tools.calls == []
    assert list((base_path / "iiif-search").iterdir()) == []


def test_conversion_failure_isolated(catalog, item_with_pdf, fake_tools, make_options, base_path):
    fake_tools.fail.add("pdftohtml")
    existing = base_path / "alto" / "42.alto.xml"
    existing.parent.mkdir(parents=True)
    existing.write_text("<alto/>", encoding="utf-8")

    stats = reconcile(catalog, make_options(files=["tsv", "pdf2xml", "alto"]), now=FIXED_NOW)

    assert stats.issue == [item_with_pdf["pdf_id"]]
    assert stats.failed == 2
    assert stats.processed == 1
    assert (base_path / "iiif-search" / "42.full.tsv").exists()
    assert not existing.exists()
    assert fake_tools.count("pdftohtml") == 1


def test_storage_failure_keeps_previous_derivative(
    catalog, item_with_pdf, fake_tools, make_options, monkeypatch
):
    options = make_options(media=["tsv"])
    reconcile(catalog, options, now=FIXED_NOW)
    before = catalog.media_of(item_with_pdf["item_id"])

    def broken_reorder(media_id, media_type):
        raise RuntimeError("duplicate position")

    monkeypatch.setattr(catalog, "reorder_last", broken_reorder)
    stats = reconcile(catalog, options, now=FIXED_NOW)

    assert stats.storage == [item_with_pdf["pdf_id"]]
    assert stats.failed == 1
    assert catalog.media_of(item_with_pdf["item_id"]) == before


def test_replace_without_text_layer_removes_outdated(
    catalog, item_with_pdf, fake_tools, make_options, base_path
):
    options = make_options(files=["tsv"], media=["tsv"])
    reconcile(catalog, options, now=FIXED_NOW)
    tsv = base_path / "iiif-search" / "42.full.tsv"
    assert tsv.exists()

    fake_tools.bbox = BBOX_EMPTY_OUTPUT.encode("utf-8")
    stats = reconcile(catalog, options, now=FIXED_NOW)

    assert stats.no_text_layer == [item_with_pdf["pdf_id"]]
    assert stats.failed == 0
    assert not tsv.exists()
    sources = [m["source"] for m in catalog.media_of(item_with_pdf["item_id"])]
    assert sources == ["report.pdf", "page-1.jpg"]


def test_replace_with_missing_pdf_removes_outdated(
    catalog, item_with_pdf, fake_tools, make_options, base_path
):
    reconcile(catalog, make_options(files=["tsv"]), now=FIXED_NOW)
    catalog.read_document(item_with_pdf["pdf_id"]).file_path.unlink()

    stats = reconcile(catalog, make_options(files=["tsv"], mode=Mode.EXISTING))

    assert stats.no_pdf == [item_with_pdf["pdf_id"]]
    assert not (base_path / "iiif-search" / "42.full.tsv").exists()


def test_user_media_with_derivative_name_is_kept(catalog, item_with_pdf, fake_tools, make_options):
    item_id = item_with_pdf["item_id"]
    user_id = catalog.add_media(
        item_id,
        "report.42.alto.xml",
        media_type="application/xml",
        extension="xml",
        content=b"<notes/>",
    )

    stats = reconcile(catalog, make_options(media=["alto"]), now=FIXED_NOW)

    media = catalog.media_of(item_id)
    assert user_id in [m["id"] for m in media]
    assert stats.processed == 1
    derivatives = [m for m in media if m["media_type"] == "application/alto+xml"]
    assert len(derivatives) == 1
    assert media[-1]["id"] == derivatives[0]["id"]

    again = reconcile(catalog, make_options(media=["alto"], mode=Mode.MISSING))
    assert again.skipped == 1


def test_id_filter(catalog, fake_tools, make_options, base_path):
    for item_id in (2, 7, 40, 45, 81):
        catalog.add_item(item_id=item_id)
        catalog.add_media(item_id, f"doc{item_id}.pdf", content=b"%PDF-1.4")

    stats = reconcile(catalog, make_options(files=["tsv"], item_ids="2-6 8 38-52 80- -- 5-3-1"))

    written = sorted(p.name for p in (base_path / "iiif-search").iterdir())
    assert written == ["2.full.tsv", "40.full.tsv", "45.full.tsv", "81.full.tsv"]
    assert stats.total == 4


def test_only_first_pdf_of_an_item(catalog, item_with_pdf, fake_tools, make_options):
    catalog.add_media(item_with_pdf["item_id"], "appendix.pdf", content=b"%PDF-1.4")

    stats = reconcile(catalog, make_options(files=["tsv"]))

    assert stats.total == 1
    assert fake_tools.calls[0][1].read_bytes() == b"%PDF-1.4 fixture"


def test_empty_candidates(catalog, fake_tools, make_options, caplog):
    with caplog.at_level(logging.INFO, logger="extractocr.orchestrator"):
        stats = reconcile(catalog, make_options(files=["tsv"]))
    assert stats.total == 0
    assert "No item with a pdf to process." in caplog.text


def test_no_target_configured(catalog, item_with_pdf, fake_tools, make_options):
    stats = reconcile(catalog, make_options())
    assert stats.total == 0
    assert fake_tools.calls == []


def test_cancellation_before_next_document(catalog, fake_tools, make_options, base_path):
    for item_id in (10, 20, 30):
        catalog.add_item(item_id=item_id)
        catalog.add_media(item_id, f"doc{item_id}.pdf", content=b"%PDF-1.4")

    polls = []

    def should_stop() -> bool:
        polls.append(True)
        return len(polls) > 1

    stats = reconcile(catalog, make_options(files=["tsv", "pdf2xml"]), should_stop=should_stop)

    assert stats.cancelled is True
    assert stats.documents == 1
    assert stats.processed == 2
    assert sorted(p.name for p in (base_path / "iiif-search").iterdir()) == ["10.full.tsv"]


def test_missing_tool_is_fatal(catalog, item_with_pdf, make_options, monkeypatch):
    monkeypatch.setattr("shutil.which", lambda name: None)
    with pytest.raises(ToolUnavailable, match="pdftohtml"):
        reconcile(catalog, make_options(files=["tsv"]))


def test_unwritable_directory_is_fatal(catalog, item_with_pdf, fake_tools, make_options, base_path):
    (base_path / "alto").write_text("not a directory")
    with pytest.raises(DirectoryUnwritable):
        reconcile(catalog, make_options(files=["tsv", "alto"]))
    assert fake_tools.calls == []


# =========================================================================
# Text storage
# =========================================================================


def test_text_stored_on_pdf_and_item(catalog, item_with_pdf, fake_tools, make_options):
    store = TextStore(property_term="bibo:content", language="en", item=True, media_pdf=True)
    options = make_options(files=["pdf2xml"], text_store=store)

    reconcile(catalog, options, now=FIXED_NOW)
    reconcile(catalog, options, now=FIXED_NOW)

    expected = ["Hello world Café\nHello again"]
    assert catalog.resource_values(item_with_pdf["pdf_id"], "bibo:content") == expected
    assert catalog.resource_values(item_with_pdf["item_id"], "bibo:content") == expected


def test_text_stored_once_per_document(catalog, item_with_pdf, fake_tools, make_options):
    store = TextStore(property_term="bibo:content", item=True, media_pdf=True)

    reconcile(catalog, make_options(files=["tsv", "alto"], text_store=store), now=FIXED_NOW)

    expected = ["Hello world Café\nHello again"]
    assert catalog.resource_values(item_with_pdf["pdf_id"], "bibo:content") == expected
    assert catalog.resource_values(item_with_pdf["item_id"], "bibo:content") == expected


def test_text_on_derivative_links_source_pdf(catalog, item_with_pdf, fake_tools, make_options):
    store = TextStore(property_term="bibo:content", media_extracted=True)

    reconcile(catalog, make_options(media=["alto"], text_store=store), now=FIXED_NOW)

    derivative = catalog.media_of(item_with_pdf["item_id"])[-1]
    values = {v["term"]: v for v in catalog.media_values(derivative["id"])}
    assert values["bibo:content"]["value"] == "Hello world\nCafé\n\nHello again"
    assert values[TERM_IS_FORMAT_OF]["value_resource_id"] == item_with_pdf["pdf_id"]
    assert catalog.resource_values(item_with_pdf["pdf_id"], "bibo:content") == []


def test_unknown_property_disables_text(catalog, item_with_pdf, fake_tools, make_options, caplog):
    store = TextStore(property_term="ex:nothing", media_pdf=True)
    with caplog.at_level(logging.WARNING):
        stats = reconcile(catalog, make_options(files=["pdf2xml"], text_store=store))
    assert stats.processed == 1
    assert "no property is defined" in caplog.text
    assert catalog.resource_values(item_with_pdf["pdf_id"], "ex:nothing") == []


def test_manual_run_does_not_store_on_item(catalog, item_with_pdf, fake_tools, make_options):
    store = TextStore(property_term="bibo:content", item=True, media_pdf=True)

    reconcile(catalog, make_options(files=["pdf2xml"], text_store=store, manual=True))

    assert catalog.resource_values(item_with_pdf["item_id"], "bibo:content") == []
    assert len(catalog.resource_values(item_with_pdf["pdf_id"], "bibo:content")) == 1


# =========================================================================
# Item save hook
# =========================================================================


def test_item_save_extracts_missing_artifacts(catalog, item_with_pdf, fake_tools, make_options, base_path):
    options = make_options(files=["tsv", "alto"], mode=Mode.MISSING)

    stats = extract_on_item_save(catalog, options, item_with_pdf["item_id"], now=FIXED_NOW)

    assert stats is not None
    assert stats.processed == 2
    assert (base_path / "alto" / "42.alto.xml").exists()


def test_item_save_noop_when_everything_exists(catalog, item_with_pdf, fake_tools, make_options):
    options = make_options(files=["tsv"], media=["tsv"])
    reconcile(catalog, options, now=FIXED_NOW)
    fake_tools.calls.clear()

    assert extract_on_item_save(catalog, options, item_with_pdf["item_id"]) is None
    assert fake_tools.calls == []


def test_item_save_without_pdf(catalog, fake_tools, make_options):
    item_id = catalog.add_item()
    assert extract_on_item_save(catalog, make_options(files=["tsv"]), item_id) is None


# =========================================================================
# CLI
# =========================================================================


def test_parse_args_defaults():
    args = parse_args([])
    assert args.mode == "all"
    assert args.files is None
    assert args.create_empty_file is None


def test_parse_args_rejects_unknown_mode():
    with pytest.raises(SystemExit):
        parse_args(["--mode", "sometimes"])


def test_main_runs_extraction(tmp_path, base_path, catalog, item_with_pdf, fake_tools):
    config = tmp_path / "config.yaml"
    config.write_text(
        f"base_path: {base_path}\n"
        f"catalog_db: {catalog.db_path}\n"
        "types_files: [tsv]\n"
        "content_store: []\n",
        encoding="utf-8",
    )

    main(["--config", str(config), "--files", "tsv-by-word", "--item-id", "42"])

    assert (base_path / "iiif-search" / "42.by-word.tsv").exists()
    assert not (base_path / "iiif-search" / "42.full.tsv").exists()


def test_main_exits_when_tools_missing(tmp_path, base_path, catalog, monkeypatch):
    monkeypatch.setattr("shutil.which", lambda name: None)
    with pytest.raises(SystemExit) as excinfo:
        main([
            "--config", str(tmp_path / "none.yaml"),
            "--base-path", str(base_path),
            "--catalog", str(catalog.db_path),
        ])
    assert excinfo.value.code == 1


def test_main_detailed_logging_writes_log_file(tmp_path, base_path, catalog, item_with_pdf, fake_tools):
    main([
        "--config", str(tmp_path / "none.yaml"),
        "--base-path", str(base_path),
        "--catalog", str(catalog.db_path),
        "--files", "tsv",
        "--detailed-logging",
    ])

    content = (base_path / "logs" / "extractocr.log").read_text(encoding="utf-8")
    assert "EXTRACTION COMPLETE" in content
    assert "cli.py:" in content
