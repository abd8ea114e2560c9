from cardbill.core.database import Base, _engine_kwargs, is_sqlite


def test_sqlite_engine_is_shared_across_threads():
    kwargs = _engine_kwargs("sqlite:///db.sqlite3")
    assert is_sqlite("sqlite:///db.sqlite3")
    assert kwargs["connect_args"]["check_same_thread"] is False
    assert kwargs["connect_args"]["timeout"] > 0


def test_server_engine_pings_pooled_connections():
    url = "postgresql+psycopg://cardbill@localhost/cardbill"
    assert not is_sqlite(url)
    assert _engine_kwargs(url) == {"pool_pre_ping": True}


def test_table_names_follow_model_names():
    assert {"invoice", "paymentmethod", "transaction"} <= set(Base.metadata.tables)
