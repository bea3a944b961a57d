"""
测试公共夹具：基于临时目录的本地存储与已初始化的书籍。
"""
import pytest

from infra.storage.file_storage import LocalFileStorage
from services.book_database import BookDatabaseService
from services.data_exchange import DataExchangeService
from services.graph_service import GraphService
from services.precise_marking import PreciseMarkingService

BOOK_PATH = "books/test_book"

CHAPTERS = {
    "01-初入江湖.md": "第一章第一行\n第一章第二行\n第一章第三行\n第一章第四行\n0123456789ABCDEF第五行",
    "02-风起云涌.md": "第二章开头\n第二章中段\n第二章结尾",
    "03-尘埃落定.md": "第三章第一行\n第三章第二行",
}


@pytest.fixture
def storage(tmp_path):
    return LocalFileStorage(str(tmp_path))


@pytest.fixture
def database(storage):
    return BookDatabaseService(storage, settings={})


@pytest.fixture
def book(database):
    """已初始化的空书籍，返回 (book_path, book_id)"""
    book_id = database.initialize_database(BOOK_PATH, title="Test", author="作者")
    return BOOK_PATH, book_id


@pytest.fixture
def book_with_chapters(storage, book):
    book_path, book_id = book
    for name, body in CHAPTERS.items():
        storage.write(f"{book_path}/{name}", body)
    return book_path, book_id


@pytest.fixture
def marking(database):
    return PreciseMarkingService(database)


@pytest.fixture
def exchange(database):
    return DataExchangeService(database)


@pytest.fixture
def graphs(database):
    return GraphService(database)
