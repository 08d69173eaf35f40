import magic # magic requires lib magic to be installed on the system. If running on mac and an error occurs, run `brew install libmagic`
import logging
from datetime import datetime
import scanflow.scanner.config as config
import scanflow.services.database.batch_service as batch_service
import scanflow.services.database.document_service as document_service
import scanflow.services.database.import_service as import_service
from scanflow.services.database.database import get_db, safe_db_operation
from scanflow.shared.batch_status import BatchStatus
from scanflow.shared.errors import InvalidInputError
from scanflow.shared.events import DocumentImported
from scanflow.shared.import_status import ImportStatus
from scanflow.shared.job_type import JobType
from scanflow.shared.utils import utcnow

def detect_mime_type(data: bytes) -> str:
    file_magic = magic.Magic(mime=True)
    return file_magic.from_buffer(data)

def render_batch_name(template, folder, now=None):
    now = now or utcnow()
    template = template or 'Import_{date}'
    return template.replace('{date}', now.strftime('%Y-%m-%d')).replace('{folder}', folder)


class ImportScanner:
    """
    Moves files from watched folders into batches, one file at a time.

    A file counts as imported only once its success log row is committed,
    together with its Document and extraction Job. Anything that fails before
    that leaves the file where it is for the next cycle.
    """

    def __init__(self, source, document_store, job_queue, session_factory=None, event_bus=None, state_machine=None,
                 file_limit=config.SCAN_FILE_LIMIT, archive_prefix=config.ARCHIVE_PREFIX):
        self.source = source
        self.document_store = document_store
        self.job_queue = job_queue
        self.session_factory = session_factory
        self.event_bus = event_bus
        self.state_machine = state_machine
        self.file_limit = file_limit
        self.archive_prefix = archive_prefix.strip('/')

    def run_cycle(self):
        import_configs = safe_db_operation(import_service.get_active_import_configs, session_factory=self.session_factory)
        results = {}
        for import_config in import_configs:
            try:
                results[import_config.id] = self.scan(import_config)
            except Exception as e:
                logging.error('Scan of import config %s failed: %s', import_config.id, e)
                results[import_config.id] = {'error': str(e)}
        return results

    def scan(self, import_config):
        summary = {'processed': 0, 'failed': 0, 'skipped': 0, 'batches': []}
        try:
            for folder, files in self._groupings(import_config):
                self._scan_grouping(import_config, folder, files, summary)
        finally:
            safe_db_operation(import_service.update_last_check_at, import_config.id, session_factory=self.session_factory)

        logging.info(f"Import config {import_config.id}: {summary['processed']} imported, {summary['failed']} failed, {summary['skipped']} skipped")
        return summary

    def _groupings(self, import_config):
        watch_folder = (import_config.watch_folder or '').strip('/')
        entries = self.source.list_entries(watch_folder)

        root_label = watch_folder.rsplit('/', 1)[-1] if watch_folder else 'root'
        groupings = [(root_label, [entry for entry in entries if not entry.is_dir])]
        for entry in entries:
            if entry.is_dir and not self._is_archive(entry.path):
                files = [child for child in self.source.list_entries(entry.path) if not child.is_dir]
                groupings.append((entry.name, files))
        return groupings

    def _is_archive(self, path):
        path = path.strip('/')
        return path == self.archive_prefix or path.startswith(self.archive_prefix + '/')

    def _scan_grouping(self, import_config, folder, files, summary):
        files = sorted(files, key=lambda entry: (entry.created_at or datetime.min, entry.path))
        batch = None
        attempted = 0
        imported = 0

        for entry in files:
            if attempted >= self.file_limit:
                break
            if safe_db_operation(import_service.is_import_settled, import_config.id, entry.path, session_factory=self.session_factory):
                summary['skipped'] += 1
                continue

            attempted += 1
            try:
                data, mime_type = self._read_file(entry)
                if batch is None:
                    batch = self._resolve_batch(import_config, folder)
                    if batch:
                        summary['batches'].append(batch.id)
                self._import_file(import_config, batch, entry, data, mime_type)
                summary['processed'] += 1
                imported += 1
            except Exception as e:
                logging.error('Failed to import %s for config %s: %s', entry.path, import_config.id, e)
                self._log_failure(import_config, batch, entry, e)
                summary['failed'] += 1

        if batch and imported:
            self._start_scanning(batch.id)

    def _start_scanning(self, batch_id):
        """
        Batches stay new while their files are imported and refresh leaves new
        batches alone. Afterwards the batch moves to scanning and picks up any
        documents extracted in the meantime.
        """
        if not self.state_machine:
            return
        try:
            batch = safe_db_operation(batch_service.get_batch, batch_id, session_factory=self.session_factory)
            if batch and batch.status == BatchStatus.NEW:
                self.state_machine.transition(batch_id, BatchStatus.SCANNING)
            self.state_machine.refresh(batch_id)
        except Exception as e:
            logging.warning(f"Imported files into batch {batch_id} but could not advance it: {e}")

    def _resolve_batch(self, import_config, folder):
        if import_config.auto_create_batch:
            batch_name = render_batch_name(import_config.batch_name_template, folder)
            batch = safe_db_operation(
                batch_service.create_batch, batch_name, import_config.customer_id, import_config.project_id,
                session_factory=self.session_factory
            )
            logging.info(f"Created batch {batch.id} ({batch_name}) for import config {import_config.id}")
            return batch
        if import_config.target_batch_id:
            return safe_db_operation(batch_service.get_batch, import_config.target_batch_id, session_factory=self.session_factory)
        return None

    def _read_file(self, entry):
        data = self.source.download(entry.path)
        mime_type = detect_mime_type(data)
        if mime_type not in config.SUPPORTED_MIME_TYPES:
            raise InvalidInputError(f"Unsupported file type {mime_type}")
        return data, mime_type

    def _import_file(self, import_config, batch, entry, data, mime_type):
        batch_id = batch.id if batch else None
        storage_key = f"{batch_id or 'unbatched'}/{utcnow().strftime('%Y%m%d%H%M%S%f')}_{entry.name}"
        self.document_store.upload(storage_key, data, mime_type)

        with get_db(self.session_factory) as db:
            try:
                document = document_service.create_document(
                    db, entry.name,
                    batch_id=batch_id,
                    project_id=import_config.project_id,
                    file_type=mime_type,
                    storage_key=storage_key,
                    file_url=self.document_store.reference(storage_key),
                    commit=False,
                )
                job = self.job_queue.enqueue(
                    JobType.EXTRACT_DOCUMENT.value, {'document_id': document.id},
                    customer_id=import_config.customer_id, db=db
                )
                import_service.create_import_log(
                    db, import_config.id, entry.name, entry.path, ImportStatus.SUCCESS,
                    document_id=document.id, batch_id=batch_id, commit=False
                )
                db.commit()
            except Exception:
                db.rollback()
                raise

        logging.info(f"Imported {entry.path} as document {document.id} in batch {batch_id}")
        self.job_queue.announce(job.id)
        if self.event_bus:
            self.event_bus.publish(DocumentImported(document_id=document.id, batch_id=batch_id, file_name=entry.name, customer_id=import_config.customer_id))
        self._archive(entry)
        return document

    def _archive(self, entry):
        destination = f"{self.archive_prefix}/{entry.path.strip('/')}"
        try:
            self.source.move(entry.path, destination)
        except Exception as e:
            # already recorded as imported, so the next cycle skips it anyway
            logging.warning(f"Imported {entry.path} but could not archive it to {destination}: {e}")

    def _log_failure(self, import_config, batch, entry, error):
        try:
            safe_db_operation(
                import_service.create_import_log, import_config.id, entry.name, entry.path, ImportStatus.FAILED,
                batch_id=batch.id if batch else None, error_message=str(error),
                retryable=not isinstance(error, InvalidInputError),
                session_factory=self.session_factory
            )
        except Exception as e:
            logging.error('Could not record failed import of %s: %s', entry.path, e)
