"""
Demo: bulk index, search, bulk update, search again, drop the index.

Needs a reachable cluster; connection details come from OPENSEARCH_* env vars.

    OPENSEARCH_HOSTS=http://localhost:9200 OPENSEARCH_USE_SSL=false python examples/run_bulk_demo.py
"""

import asyncio

from loguru import logger

from bulk_ingest import IngestClient, IngestSettings, OpenSearchSettings
from bulk_ingest.stores import OpenSearchStore

INDEX = "my-index"


async def search_titles(store: OpenSearchStore, text: str):
    response = await store.client.search(
        index=INDEX, body={"query": {"match": {"title": text}}}
    )
    hits = response["hits"]["hits"]
    for hit in hits:
        logger.info(f"  {hit['_id']}: {hit['_source']}")
    return hits


async def main():
    store = OpenSearchStore.from_settings(OpenSearchSettings())
    settings = IngestSettings(max_batch_items=3, flush_interval=1.0)
    try:
        info = await store.info()
        logger.info(
            f"Connected to {info['version'].get('distribution', 'opensearch')} "
            f"{info['version']['number']}"
        )

        await store.ensure_index(
            INDEX,
            settings={"number_of_shards": 2, "number_of_replicas": 1},
            mappings={"properties": {"age": {"type": "integer"}}},
        )

        async with IngestClient(store, settings, client_id="demo") as client:
            handles = [
                client.submit("index", INDEX, {"title": f"Document {i}", "age": 20 + i}, doc_id=f"id{i}")
                for i in (1, 2, 3)
            ]
            results = await asyncio.gather(*(h.wait() for h in handles))
            logger.info(f"Indexed {sum(r.ok for r in results)}/{len(results)} documents")

            await asyncio.sleep(3)  # refresh interval
            logger.info("Search for 'Document':")
            hits = await search_titles(store, "Document")

            updates = [
                client.submit("update", INDEX, {"text": "Updated document"}, doc_id=hit["_id"])
                for hit in hits
            ]
            for handle in updates:
                result = await handle
                if not result.ok:
                    logger.error(f"Update {result.doc_id} failed: {result.error}")

        await asyncio.sleep(3)
        logger.info("Search after update:")
        await search_titles(store, "Document")

        logger.info(f"Client stats: {client.stats()}")
        await store.delete_index(INDEX)
    finally:
        await store.close()


if __name__ == "__main__":
    asyncio.run(main())
