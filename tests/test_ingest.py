"""Tests for knowledge and inventory loaders and the ingestion pipeline."""

import json

import pytest
from sqlalchemy import select

from database.models import InventoryItem, KnowledgeDocument
from ingest.document_loader import DocumentLoader, DocumentRecord
from ingest.inventory_loader import InventoryLoader, VehicleRecord, parse_spanish_number
from ingest.main import IngestionPipeline
from retrieval.knowledge_retriever import KnowledgeIndexer
from retrieval.pinecone_client import PineconeClient


def test_spanish_numbers():
    assert parse_spanish_number("18.000") == 18000
    assert parse_spanish_number("24.990,50 €") == 24990.5
    assert parse_spanish_number("125000") == 125000
    assert parse_spanish_number("") is None
    assert parse_spanish_number(None) is None


def test_inventory_csv(tmp_path):
    path = tmp_path / "inventory.csv"
    path.write_text(
        "Marca,Modelo,Version,Kilometros,Precio_Venta,Type,Sold\n"
        "SEAT,León,1.5 TSI FR,125.000,18.000,hatchback,no\n"
        "Kia,Sportage,,40000,\"24.990,50\",SUV,sí\n"
        ",,,,,,\n",
        encoding="utf-8",
    )
    vehicles = InventoryLoader().load(path)

    assert len(vehicles) == 2
    leon, sportage = vehicles
    assert leon.kilometros == 125000
    assert leon.precio_venta == 18000
    assert leon.type == "hatchback"
    assert leon.sold is False
    assert sportage.version is None
    assert sportage.precio_venta == 24990.5
    assert sportage.type == "suv"
    assert sportage.sold is True


def test_inventory_json_with_vehicles_key(tmp_path):
    path = tmp_path / "inventory.json"
    path.write_text(json.dumps({"vehicles": [
        {"marca": "Toyota", "modelo": "Corolla", "precio_venta": 15000, "type": "berlina"},
    ]}), encoding="utf-8")
    vehicles = InventoryLoader().load(path)

    assert vehicles[0].to_columns()["marca"] == "Toyota"
    assert vehicles[0].type is None


def test_documents_from_directory(tmp_path):
    (tmp_path / "garantia").mkdir()
    (tmp_path / "garantia" / "condiciones.md").write_text(
        "# Garantía Carrera Cars\n\nTodos los coches tienen 12 meses de garantía.", encoding="utf-8"
    )
    (tmp_path / "horario.txt").write_text("Abrimos de lunes a sábado.", encoding="utf-8")
    (tmp_path / "faqs.json").write_text(json.dumps([
        {"title": "¿Aceptáis coche a cambio?", "content": "Sí, tasamos tu coche.", "category": "faq"},
        {"title": "Sin contenido"},
    ]), encoding="utf-8")
    (tmp_path / "logo.png").write_bytes(b"\x89PNG")

    records = {r.title: r for r in DocumentLoader().load_directory(tmp_path)}

    assert set(records) == {"Garantía Carrera Cars", "Horario", "¿Aceptáis coche a cambio?"}
    assert records["Garantía Carrera Cars"].category == "garantia"
    assert records["Garantía Carrera Cars"].file_name == "condiciones.md"
    assert records["Horario"].category == "general"
    assert records["¿Aceptáis coche a cambio?"].category == "faq"


# ── Pipeline ──────────────────────────────────────────────────────

class CountingEmbedder:
    def __init__(self):
        self.calls = []

    async def embed_text(self, text):
        self.calls.append(text)
        return [float(len(text)), 1.0]


class MemoryIndex:
    def __init__(self):
        self.vectors = {}

    def upsert_single(self, id, embedding, metadata=None, namespace=""):
        self.vectors[(namespace, id)] = (embedding, dict(metadata or {}))
        return True

    def update_metadata(self, id, metadata, namespace=""):
        self.vectors[(namespace, id)][1].update(metadata)
        return True


@pytest.fixture
def embedder():
    return CountingEmbedder()


@pytest.fixture
def index():
    return MemoryIndex()


@pytest.fixture
def pipeline(session_factory, embedder, index):
    return IngestionPipeline(KnowledgeIndexer(embedder, index), "default", session_factory=session_factory)


async def _all(session_factory, model):
    async with session_factory() as session:
        return list((await session.execute(select(model))).scalars().all())


@pytest.mark.asyncio
async def test_reingesting_unchanged_document_keeps_embedding(pipeline, session_factory, embedder, index):
    record = DocumentRecord(title="Garantía", content="12 meses de garantía.", category="garantia",
                            file_name="garantia.md")

    first = await pipeline.ingest_documents([record])
    second = await pipeline.ingest_documents([record])

    assert (first["stored"], first["indexed"]) == (1, 1)
    assert (second["stored"], second["unchanged"], second["indexed"]) == (0, 1, 0)
    assert len(embedder.calls) == 1
    assert len(await _all(session_factory, KnowledgeDocument)) == 1
    assert len(index.vectors) == 1


@pytest.mark.asyncio
async def test_reingesting_changed_document_regenerates_embedding(pipeline, session_factory, embedder, index):
    await pipeline.ingest_documents([
        DocumentRecord(title="Garantía", content="12 meses.", file_name="garantia.md"),
    ])
    stats = await pipeline.ingest_documents([
        DocumentRecord(title="Garantía", content="24 meses en todos los coches.", file_name="garantia.md"),
    ])

    assert (stats["stored"], stats["updated"], stats["indexed"]) == (0, 1, 1)
    assert len(embedder.calls) == 2
    docs = await _all(session_factory, KnowledgeDocument)
    assert len(docs) == 1
    assert docs[0].content == "24 meses en todos los coches."
    assert docs[0].embedding == [float(len("Garantía\n\n24 meses en todos los coches.")), 1.0]
    vector, _ = index.vectors[(PineconeClient.DOCUMENTS_NAMESPACE, docs[0].id)]
    assert vector == docs[0].embedding
    assert len(index.vectors) == 1


@pytest.mark.asyncio
async def test_reingesting_sold_vehicle_only_updates_flag(pipeline, session_factory, embedder, index):
    vehicle = VehicleRecord(marca="Kia", modelo="Sportage", matricula="1234ABC", precio_venta=21000)
    await pipeline.ingest_inventory([vehicle])

    stats = await pipeline.ingest_inventory([vehicle.model_copy(update={"sold": True})])

    assert stats["updated"] == 1
    assert len(embedder.calls) == 1
    items = await _all(session_factory, InventoryItem)
    assert len(items) == 1
    assert items[0].sold is True
    _, metadata = index.vectors[(PineconeClient.INVENTORY_NAMESPACE, items[0].id)]
    assert metadata["sold"] is True
