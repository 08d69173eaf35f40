import io
import re
import csv
import json
import logging
import xml.etree.ElementTree as ET
from scanflow.shared.utils import utcnow, isoformat

def _field_names(documents):
    names = []
    for document in documents:
        for name in (document.extracted_fields or {}):
            if name not in names:
                names.append(name)
    return names

def _rows(documents):
    field_names = _field_names(documents)
    rows = []
    for document in documents:
        row = {'document_id': document.id, 'file_name': document.file_name}
        for name in field_names:
            value = document.field_value(name)
            row[name] = '' if value is None else value
        rows.append(row)
    return ['document_id', 'file_name'] + field_names, rows

def export_csv(batch, documents):
    columns, rows = _rows(documents)
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=columns)
    writer.writeheader()
    writer.writerows(rows)
    return output.getvalue().encode('utf-8')

def export_json(batch, documents):
    _, rows = _rows(documents)
    body = {
        'batch': {'id': batch.id, 'name': batch.batch_name, 'exported_at': isoformat(utcnow())},
        'documents': rows,
    }
    return json.dumps(body, indent=2, default=str).encode('utf-8')

def export_xml(batch, documents):
    columns, rows = _rows(documents)
    root = ET.Element('batch', id=str(batch.id), name=batch.batch_name)
    for row in rows:
        element = ET.SubElement(root, 'document')
        for column in columns:
            child = ET.SubElement(element, re.sub(r'[^0-9a-zA-Z_]', '_', column))
            child.text = str(row[column])
    return ET.tostring(root, encoding='utf-8', xml_declaration=True)

def export_txt(batch, documents):
    columns, rows = _rows(documents)
    lines = [f"Batch: {batch.batch_name}", f"Documents: {len(rows)}", '']
    for row in rows:
        lines.extend(f"{column}: {row[column]}" for column in columns)
        lines.append('')
    return '\n'.join(lines).encode('utf-8')

EXPORTERS = {
    'csv': (export_csv, 'text/csv'),
    'json': (export_json, 'application/json'),
    'xml': (export_xml, 'application/xml'),
    'txt': (export_txt, 'text/plain'),
}


class BatchExporter:
    """Renders a batch in every enabled format and uploads each file."""

    def __init__(self, object_store):
        self.object_store = object_store

    def export(self, batch, documents, formats: dict):
        succeeded, failed = [], []
        timestamp = utcnow().strftime('%Y%m%dT%H%M%S')
        safe_name = re.sub(r'[^0-9a-zA-Z_-]+', '_', batch.batch_name)

        for export_format, settings in formats.items():
            destination = (settings or {}).get('destination', '').strip('/')
            file_name = f"{safe_name}_{timestamp}.{export_format}"
            key = f"{destination}/{file_name}" if destination else file_name
            try:
                if export_format not in EXPORTERS:
                    raise ValueError(f"Unsupported export format: {export_format}")
                render, content_type = EXPORTERS[export_format]
                self.object_store.upload(key, render(batch, documents), content_type)
                succeeded.append({
                    'type': export_format,
                    'destination': destination,
                    'fileName': file_name,
                    'exportedAt': isoformat(utcnow()),
                })
                logging.info(f"Exported batch {batch.id} as {export_format} to {key}")
            except Exception as e:
                logging.error('Export of batch %s as %s failed: %s', batch.id, export_format, e)
                failed.append({'type': export_format, 'destination': destination, 'error': str(e)})

        return succeeded, failed
