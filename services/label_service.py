import io
import logging
from typing import Dict, List, Tuple

from pypdf import PdfReader, PdfWriter

from services.sync_service import SyncService


async def get_order_label(service: SyncService, order_id: str) -> Tuple[str, bytes]:
    """Returns (consignment_id, PDF bytes) for one synced order."""
    consignment_id = await service.get_consignment_id(order_id)
    content = await service.carrier.download_label(consignment_id)
    return consignment_id, content


async def generate_labels_pdf(service: SyncService, order_ids: List[str]) -> Tuple[io.BytesIO, Dict[str, str]]:
    """
    Downloads the label of every order and merges them into one PDF, in the
    order given. Returns the merged buffer and {order_id: reason} for failures.
    """
    writer = PdfWriter()
    failed: Dict[str, str] = {}

    # One label request at a time
    for order_id in order_ids:
        try:
            _, content = await get_order_label(service, order_id)
            reader = PdfReader(io.BytesIO(content))
            for page in reader.pages:
                writer.add_page(page)
        except Exception as e:
            logging.error(f"Could not get the label of order {order_id}: {e}")
            failed[order_id] = str(e)

    buffer = io.BytesIO()
    if len(writer.pages) > 0:
        writer.write(buffer)
    buffer.seek(0)
    return buffer, failed
