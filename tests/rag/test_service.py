import asyncio

from offline_rag.memory.rag.embeddings import Embedder, HashingEmbedder
from offline_rag.memory.rag.gate import RelevanceGate
from offline_rag.memory.rag.models import NO_CONTEXT
from offline_rag.memory.rag.service import MemoryService


class FlakyEmbedder(Embedder):
    """Hashing embedder that fails for any text containing ``FAIL`` while ``broken``."""

    def __init__(self, dim=128):
        self.inner = HashingEmbedder(dim)
        self.dim = dim
        self.model_id = self.inner.model_id
        self.broken = True

    async def embed(self, text):
        if self.broken and "FAIL" in text:
            raise ConnectionError("model crashed")
        return await self.inner.embed(text)


def _split(text):
    return [part.strip() for part in text.split("|") if part.strip()]


def _service(path, embedder=None):
    embedder = embedder or HashingEmbedder(1024)
    gate = RelevanceGate(embedder, top_k=5, min_score=0.5, include_sources=True, max_chars_per_fragment=0)
    return MemoryService.open(str(path), embedder, gate=gate, chunker=_split)


DOC = (
    "The router password can be reset by holding the reset button for ten seconds. | "
    "Firmware updates are downloaded from the vendor support page. | "
    "The warranty covers hardware defects for two years."
)


def test_ingest_then_answer(tmp_path):
    svc = _service(tmp_path / "m.db")

    async def main():
        report = await svc.ingest_document("manual.txt", DOC, "manuals")
        ctx = await svc.answer_query("manuals", "The router password can be reset by holding the reset button")
        miss = await svc.answer_query("manuals", "Which spices go into a curry?")
        return report, ctx, miss

    report, ctx, miss = asyncio.run(main())
    svc.close()

    assert report.fragments == 3
    assert report.embedded == 3
    assert report.persisted == 3
    assert report.ok
    assert isinstance(ctx, str)
    assert "reset button" in ctx
    assert "[manual.txt]" in ctx
    assert miss is NO_CONTEXT


def test_embedding_failure_leaves_fragment_pending(tmp_path):
    emb = FlakyEmbedder()
    svc = _service(tmp_path / "m.db", emb)
    doc = "one alpha | two beta | three FAIL gamma | four delta | five epsilon"

    async def main():
        report = await svc.ingest_document("doc.txt", doc, "c")
        return report, await svc.stats("c")

    report, stats = asyncio.run(main())

    assert report.fragments == 5
    assert report.embedded == 4
    assert len(report.pending) == 1
    assert report.persisted == 5
    assert not report.ok
    assert (stats.total, stats.embedded, stats.pending, stats.indexed) == (5, 4, 1, 4)

    emb.broken = False
    fixed = asyncio.run(svc.reembed("c"))
    stats = asyncio.run(svc.stats("c"))
    svc.close()

    assert fixed.fragments == 1
    assert fixed.embedded == 1
    assert (stats.embedded, stats.pending, stats.indexed) == (5, 0, 5)


def test_warm_start_matches_live_results(tmp_path):
    path = tmp_path / "m.db"
    query = "reset the router password"

    svc = _service(path)

    async def live():
        await svc.ingest_document("manual.txt", DOC, "manuals")
        return await svc.answer_query("manuals", query, min_score=0.0)

    before = asyncio.run(live())
    svc.close()

    restarted = _service(path)

    async def cold():
        loaded = await restarted.warm_start("manuals")
        return loaded, await restarted.answer_query("manuals", query, min_score=0.0)

    loaded, after = asyncio.run(cold())
    restarted.close()

    assert loaded == 3
    assert after == before


def test_query_loads_collection_on_demand(tmp_path):
    path = tmp_path / "m.db"
    svc = _service(path)
    asyncio.run(svc.ingest_document("manual.txt", DOC, "manuals"))
    svc.close()

    fresh = _service(path)
    assert not fresh.registry.has("manuals")
    ctx = asyncio.run(fresh.answer_query("manuals", "The warranty covers hardware defects"))
    fresh.close()

    assert "warranty" in ctx


def test_concurrent_ingests_lose_nothing(tmp_path):
    svc = _service(tmp_path / "m.db")
    docs = [f"doc {i} part a | doc {i} part b" for i in range(8)]

    async def main():
        await svc.warm_start("c")
        await asyncio.gather(*(svc.ingest_document(f"{i}.txt", d, "c") for i, d in enumerate(docs)))
        return await svc.stats("c")

    stats = asyncio.run(main())
    svc.close()

    assert stats.total == 16
    assert stats.indexed == 16


def test_clear_and_reload(tmp_path):
    svc = _service(tmp_path / "m.db")

    async def main():
        await svc.ingest_document("manual.txt", DOC, "manuals")
        await svc.ingest_document("other.txt", "keep me around please", "other")
        removed = await svc.clear_collection("manuals")
        empty = await svc.answer_query("manuals", "router password reset")
        report = await svc.reload_from_source("faq.txt", "bananas are yellow | apples are red", "other")
        return removed, empty, report, await svc.stats("other")

    removed, empty, report, stats = asyncio.run(main())
    svc.close()

    assert removed == 3
    assert empty is NO_CONTEXT
    assert report.persisted == 2
    assert stats.total == 2
    assert stats.indexed == 2


def test_top_scores_ignores_threshold(tmp_path):
    svc = _service(tmp_path / "m.db")

    async def main():
        await svc.ingest_document("manual.txt", DOC, "manuals")
        return await svc.top_scores("manuals", "router password", n=2)

    lines = asyncio.run(main())
    svc.close()

    assert len(lines) == 2
    assert lines[0].score >= lines[1].score
    assert "router" in lines[0].preview
    assert lines[0].source_name == "manual.txt"


def test_dimension_mismatch_excluded_on_warm_start(tmp_path):
    path = tmp_path / "m.db"
    svc = _service(path, HashingEmbedder(64))
    asyncio.run(svc.ingest_document("old.txt", "stored with the old backend", "c"))
    svc.close()

    switched = _service(path, HashingEmbedder(128))
    asyncio.run(switched.ingest_document("new.txt", "stored with the new backend", "c"))
    stats = asyncio.run(switched.stats("c"))
    assert (stats.total, stats.indexed, stats.rejected) == (2, 1, 1)

    report = asyncio.run(switched.reembed("c", only_pending=False))
    stats = asyncio.run(switched.stats("c"))
    switched.close()

    assert report.embedded == 2
    assert (stats.indexed, stats.rejected) == (2, 0)


def test_blank_document_creates_nothing(tmp_path):
    svc = _service(tmp_path / "m.db")
    report = asyncio.run(svc.ingest_document("empty.txt", "  ", "c"))
    stats = asyncio.run(svc.stats("c"))
    svc.close()

    assert report.fragments == 0
    assert stats.total == 0


def test_warm_start_all(tmp_path):
    path = tmp_path / "m.db"
    svc = _service(path)

    async def main():
        await svc.ingest_document("a.txt", "one | two", "a")
        await svc.ingest_document("b.txt", "three", "b")

    asyncio.run(main())
    svc.close()

    restarted = _service(path)
    counts = asyncio.run(restarted.warm_start_all())
    restarted.close()

    assert counts == {"a": 2, "b": 1}


def test_categories_default_to_source_and_filter_queries(tmp_path):
    svc = _service(tmp_path / "m.db")
    faq = "The warranty covers hardware defects for two years."
    query = "router manual: the warranty covers hardware defects for two years"

    async def main():
        await svc.ingest_document("router-manual.txt", DOC, "manuals")
        await svc.ingest_document("faq.txt", faq, "manuals", category="Warranty FAQ")
        both = await svc.answer_query("manuals", query, detect=False)
        narrowed = await svc.answer_query("manuals", query, detect=True)
        explicit = await svc.answer_query("manuals", query, categories=["warranty-faq"])
        missing = await svc.answer_query("manuals", query, categories=["garden"])
        return await svc.categories("manuals"), both, narrowed, explicit, missing

    labels, both, narrowed, explicit, missing = asyncio.run(main())
    svc.close()

    assert labels == ["Warranty FAQ", "router manual"]
    assert "[router-manual.txt]" in both and "[faq.txt]" in both
    assert "[router-manual.txt]" in narrowed and "[faq.txt]" not in narrowed
    assert "[faq.txt]" in explicit and "[router-manual.txt]" not in explicit
    assert missing is NO_CONTEXT


def test_ingest_cleans_text_before_chunking(tmp_path):
    svc = _service(tmp_path / "m.db")
    raw = "<|im_start|>Firmware   updates come\x00 from the vendor.<|im_end|> | [INST]second part"

    async def main():
        await svc.ingest_document("dirty.txt", raw, "c")
        return await svc.repo.load_all("c")

    stored = asyncio.run(main())
    svc.close()

    assert [f.text for f in stored] == ["Firmware updates come from the vendor.", "second part"]
    assert {f.category for f in stored} == {"dirty"}


def test_cleaning_can_be_switched_off(tmp_path):
    emb = HashingEmbedder(64)
    svc = MemoryService.open(
        str(tmp_path / "m.db"), emb, chunker=_split, cleaner=lambda text: text
    )
    asyncio.run(svc.ingest_document("raw.txt", "keep  <s>  as is", "c"))
    stored = asyncio.run(svc.repo.load_all("c"))
    svc.close()

    assert stored[0].text == "keep  <s>  as is"
