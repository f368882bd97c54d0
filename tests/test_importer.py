from datetime import date

import pytest
from sqlalchemy import func, select

from questions_hub.importing import (
    BlockDto,
    DatabaseImportError,
    ImportStoragePaths,
    LocalImportStorage,
    PackageDbImporter,
    PackageStatus,
    ParseResult,
    QuestionDto,
    QuestionNumberingMode,
    TourDto,
    TourType,
)
from questions_hub.importing.importer import DEFAULT_PACKAGE_TITLE, parse_author_name, truncate
from questions_hub.importing.schema import (
    AuthorModel,
    BlockModel,
    PackageModel,
    QuestionModel,
    TagModel,
    TourModel,
    package_editors,
    package_tags,
    question_authors,
    tour_editors,
)


@pytest.fixture()
def storage(tmp_path):
    return LocalImportStorage(ImportStoragePaths(tmp_path / "storage"))


@pytest.fixture()
def importer(tmp_path, storage):
    return PackageDbImporter(f"sqlite+pysqlite:///{tmp_path / 'packages.db'}", storage)


def _count(importer, model_or_table):
    with importer.SessionLocal() as session:
        return session.execute(select(func.count()).select_from(model_or_table)).scalar_one()


def _result(**overrides):
    result = ParseResult(
        title="Кубок Києва",
        played_from=date(2024, 3, 1),
        editors=["Іван Петренко"],
        tags=["Історія"],
        numbering_mode=QuestionNumberingMode.PER_TOUR,
        tours=[
            TourDto(
                number="1",
                order_index=0,
                editors=["Іван Петренко", "Олена Коваль (Львів)"],
                questions=[
                    QuestionDto(number="1", text="Питання 1", answer="Відповідь 1", authors=["Сергій Рева"]),
                    QuestionDto(number="2", text="Питання 2", answer="Відповідь 2", authors=["Сергій Рева"]),
                ],
            )
        ],
    )
    for key, value in overrides.items():
        setattr(result, key, value)
    return result


def test_package_aggregate_is_written(importer, tmp_path):
    package_id = importer.import_package(_result(), "owner-1", "job-1", tmp_path / "assets")

    with importer.SessionLocal() as session:
        package = session.get(PackageModel, package_id)
        assert package.title == "Кубок Києва"
        assert package.status == PackageStatus.DRAFT
        assert package.owner_id == "owner-1"
        assert package.total_questions == 2
        assert package.numbering_mode == QuestionNumberingMode.PER_TOUR
        assert package.played_from == date(2024, 3, 1)
        tour = session.execute(select(TourModel)).scalar_one()
        assert tour.package_id == package_id
        assert tour.type == TourType.REGULAR
        questions = session.execute(select(QuestionModel).order_by(QuestionModel.order_index)).scalars().all()
        assert [(q.number, q.order_index, q.block_id) for q in questions] == [("1", 0, None), ("2", 1, None)]

    assert _count(importer, AuthorModel) == 3
    assert _count(importer, tour_editors) == 2
    assert _count(importer, package_editors) == 1
    # the same author on two questions is one author row with two links
    assert _count(importer, question_authors) == 2


def test_block_questions_share_one_order_counter(importer, tmp_path):
    tour = TourDto(
        number="1",
        blocks=[
            BlockDto(order_index=0, name="Блок 1", editors=["Іван Петренко"], questions=[QuestionDto("1"), QuestionDto("2")]),
            BlockDto(order_index=1, name="Блок 2", questions=[QuestionDto("3")]),
        ],
    )
    importer.import_package(_result(tours=[tour]), "owner", "job", tmp_path / "assets")

    with importer.SessionLocal() as session:
        blocks = session.execute(select(BlockModel).order_by(BlockModel.order_index)).scalars().all()
        assert [b.name for b in blocks] == ["Блок 1", "Блок 2"]
        questions = session.execute(select(QuestionModel).order_by(QuestionModel.order_index)).scalars().all()
        assert [q.order_index for q in questions] == [0, 1, 2]
        assert [q.block_id for q in questions] == [blocks[0].id, blocks[0].id, blocks[1].id]
        assert all(q.answer == "" for q in questions)


def test_invalid_author_names_are_skipped(importer, tmp_path):
    question = QuestionDto("1", text="Т", answer="В", authors=["Іван", "Хто: Іван", "Іван Петро Петренко", "Олена Коваль"])
    tour = TourDto(number="1", questions=[question])
    importer.import_package(_result(editors=[], tours=[tour]), "owner", "job", tmp_path / "assets")

    with importer.SessionLocal() as session:
        authors = session.execute(select(AuthorModel)).scalars().all()
        assert [(a.first_name, a.last_name) for a in authors] == [("Олена", "Коваль")]


def test_authors_are_reused_across_imports(importer, tmp_path):
    importer.import_package(_result(), "owner", "job-1", tmp_path / "assets")
    importer.import_package(_result(), "owner", "job-2", tmp_path / "assets")

    assert _count(importer, PackageModel) == 2
    assert _count(importer, AuthorModel) == 3


def test_tags_are_matched_case_insensitively(importer, tmp_path):
    importer.import_package(_result(tags=["Історія", "історія", " ", "Кіно"]), "owner", "job-1", tmp_path / "assets")
    importer.import_package(_result(tags=["ІСТОРІЯ"]), "owner", "job-2", tmp_path / "assets")

    with importer.SessionLocal() as session:
        tags = session.execute(select(TagModel).order_by(TagModel.id)).scalars().all()
        assert [t.name for t in tags] == ["Історія", "Кіно"]
    assert _count(importer, package_tags) == 3


def test_short_fields_are_truncated(importer, tmp_path):
    question = QuestionDto("1", text="Т", answer="а" * 1500, accepted_answers="б" * 1001, host_instructions="в" * 10)
    importer.import_package(_result(tours=[TourDto(number="1", questions=[question])]), "owner", "job", tmp_path / "assets")

    with importer.SessionLocal() as session:
        stored = session.execute(select(QuestionModel)).scalar_one()
        assert len(stored.answer) == 1000
        assert len(stored.accepted_answers) == 1000
        assert stored.host_instructions == "в" * 10
        assert stored.rejected_answers is None


def test_assets_are_promoted_to_media(importer, storage, tmp_path):
    assets_dir = tmp_path / "assets"
    assets_dir.mkdir()
    (assets_dir / "map.png").write_bytes(b"png")
    question = QuestionDto(
        "1",
        text="Т",
        answer="В",
        handout_asset_file_name="map.png",
        comment_asset_file_name="missing.png",
    )
    importer.import_package(_result(tours=[TourDto(number="1", questions=[question])]), "owner", "job", assets_dir)

    with importer.SessionLocal() as session:
        stored = session.execute(select(QuestionModel)).scalar_one()
        assert stored.handout_url == "/media/job_map.png"
        assert stored.comment_attachment_url is None
    assert (storage.paths.handouts_dir() / "job_map.png").read_bytes() == b"png"
    assert (assets_dir / "map.png").exists()


def test_same_asset_names_from_two_jobs_do_not_collide(importer, storage, tmp_path):
    for job_id, content in [("3f2a-01", b"first"), ("3f2a-02", b"second")]:
        assets_dir = tmp_path / job_id / "assets"
        assets_dir.mkdir(parents=True)
        (assets_dir / "image_001.png").write_bytes(content)
        question = QuestionDto("1", text="Т", answer="В", handout_asset_file_name="image_001.png")
        importer.import_package(_result(tours=[TourDto(number="1", questions=[question])]), "owner", job_id, assets_dir)

    with importer.SessionLocal() as session:
        urls = [q.handout_url for q in session.execute(select(QuestionModel).order_by(QuestionModel.id)).scalars()]

    assert urls == ["/media/3f2a01_image_001.png", "/media/3f2a02_image_001.png"]
    handouts = storage.paths.handouts_dir()
    assert (handouts / "3f2a01_image_001.png").read_bytes() == b"first"
    assert (handouts / "3f2a02_image_001.png").read_bytes() == b"second"


def test_asset_names_outside_the_job_folder_are_not_promoted(storage, tmp_path):
    assets_dir = tmp_path / "job" / "assets"
    assets_dir.mkdir(parents=True)
    (tmp_path / "job" / "secret.txt").write_text("secret")

    for name in ["../secret.txt", "..", "sub/x.png", "..\\secret.txt", ""]:
        assert storage.promote_asset(assets_dir, name, "job") is None

    handouts = storage.paths.handouts_dir()
    assert not handouts.exists() or list(handouts.iterdir()) == []


def test_default_title_and_shared_editors(importer, tmp_path):
    result = _result(title=None, shared_editors=True, editors=[], package_editors=["Олена Коваль"])
    package_id = importer.import_package(result, "owner", "job", tmp_path / "assets")

    with importer.SessionLocal() as session:
        package = session.get(PackageModel, package_id)
        assert package.title == DEFAULT_PACKAGE_TITLE
        assert package.shared_editors is True
        linked = session.execute(select(package_editors.c.author_id)).scalars().all()
        author = session.get(AuthorModel, linked[0])
        assert (author.first_name, author.last_name) == ("Олена", "Коваль")


def test_failure_rolls_back_whole_package(importer, tmp_path, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(importer, "_write_question", explode)

    with pytest.raises(DatabaseImportError) as exc:
        importer.import_package(_result(), "owner", "job", tmp_path / "assets")

    assert exc.value.user_message == "Не вдалося зберегти пакет в базу даних"
    assert exc.value.is_retriable is False
    assert "disk full" in exc.value.details
    assert _count(importer, PackageModel) == 0
    assert _count(importer, TourModel) == 0
    assert _count(importer, AuthorModel) == 0


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Іван Петренко", ("Іван", "Петренко")),
        ("Іван Петренко (Київ).", ("Іван", "Петренко")),
        ("Дарʼя Іванова-Коваль", ("Дарʼя", "Іванова-Коваль")),
        ("Іван", None),
        ("Іван Петро Петренко", None),
        ("Іван 2Петренко", None),
        ("Відповідь: Київ", None),
        ("«Іван» Петренко", None),
    ],
)
def test_parse_author_name(raw, expected):
    assert parse_author_name(raw) == expected


def test_truncate():
    assert truncate(None, 5) is None
    assert truncate("", 5) == ""
    assert truncate("abcdef", 5) == "abcde"
    assert truncate("abc", 5) == "abc"
