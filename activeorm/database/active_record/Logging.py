import logging
import time
from contextlib import contextmanager

logger = logging.getLogger("orm.sql")


@contextmanager
def query_logging(model_or_db):
    """
    Context manager that logs all statements executed inside its block.
    Accepts either a query/record holding .db or a Database instance.
    """
    db = getattr(model_or_db, "db", model_or_db)  # support model or db
    original_execute = db.execute
    patched_instance = "execute" in vars(db)

    def logged_execute(sql, params=None):
        start = time.perf_counter()
        result = original_execute(sql, params)
        elapsed = (time.perf_counter() - start) * 1000
        logger.debug("[SQL] %s\n[Params] %s\n[Took] %.2f ms", sql, tuple(params or ()), elapsed)
        return result

    db.execute = logged_execute
    try:
        yield db
    finally:
        if patched_instance:
            db.execute = original_execute
        else:
            del db.execute
