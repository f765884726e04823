from envdrift.catalog import CatalogReader


class RecordingEngine:
    def __init__(self):
        self.disposed = 0

    def dispose(self):
        self.disposed += 1


def test_close_disposes_engine():
    """
    Closing a reader releases its engine's connection pool
    """
    engine = RecordingEngine()
    reader = CatalogReader(engine, "public")

    reader.close()

    assert engine.disposed == 1
    assert reader.schema == "public"
