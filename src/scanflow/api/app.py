import os
import time
import logging
from functools import wraps
import scanflow.services.database.api_key_service as api_key_service
import scanflow.services.database.batch_service as batch_service
import scanflow.services.database.document_service as document_service
import scanflow.services.database.duplicate_service as duplicate_service
import scanflow.services.database.import_service as import_service
import scanflow.services.database.webhook_service as webhook_service
from flask import Flask, request, jsonify, g
from flask_cors import CORS
from scanflow.api.auth import Auth
from scanflow.api.validators import RequestValidator, Validations
from scanflow.pipeline import Pipeline
from scanflow.services.database.database import safe_db_operation
from scanflow.services.rabbitmq.job_publisher import JobPublisher
from scanflow.shared.batch_status import BatchStatus
from scanflow.shared.duplicate_status import DuplicateStatus
from scanflow.shared.errors import InvalidInputError, InvalidTransitionError, NotFoundError
from scanflow.shared.job_type import JobType
from scanflow.shared.validation_status import ValidationStatus
from scanflow.webhooks.diagnostics import diagnose

auth = Auth()
pipeline = Pipeline(publisher=JobPublisher())
app = Flask(__name__)
CORS(app)

logging.basicConfig(filename='./api-log.txt', level=logging.INFO)

def operator_only(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        invalid = RequestValidator(request, auth).validate([Validations.CRED])
        if invalid:
            return RequestValidator.dispatch_on_invalid(invalid, jsonify)
        return view(*args, **kwargs)
    return wrapper

def usage_logged(view):
    """Record every read API call, whatever its outcome."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        started = time.monotonic()
        g.api_key_id = None
        status_code = 500
        try:
            response = view(*args, **kwargs)
            status_code = response[1] if isinstance(response, tuple) else response.status_code
            return response
        finally:
            try:
                safe_db_operation(
                    api_key_service.log_usage,
                    g.api_key_id,
                    request.path,
                    request.method,
                    status_code,
                    int((time.monotonic() - started) * 1000),
                    ip_address=request.headers.get('X-Forwarded-For', request.remote_addr),
                    user_agent=request.headers.get('User-Agent'),
                    session_factory=pipeline.session_factory,
                )
            except Exception as e:
                logging.error('Failed to record API usage: %s', e)
    return wrapper

@app.route('/v1/documents', methods=['GET'])
@usage_logged
def retrieve_documents():
    validator = RequestValidator(request)
    invalid = validator.validate([Validations.API_KEY])
    if invalid:
        return RequestValidator.dispatch_on_invalid(invalid, jsonify)

    try:
        api_key = auth.resolve_api_key(request.headers.get('X-API-Key'), session_factory=pipeline.session_factory)
        if not api_key:
            return jsonify({'error': 'Invalid API key'}), 401
        g.api_key_id = api_key.id
        safe_db_operation(api_key_service.touch_api_key, api_key.id, session_factory=pipeline.session_factory)

        invalid = validator.validate([Validations.TARGET, Validations.SINGLE_TARGET, Validations.TARGET_ID, Validations.STATUS])
        if invalid:
            return RequestValidator.dispatch_on_invalid(invalid, jsonify)

        if request.args.get('document_id'):
            return retrieve_single_document(api_key, int(request.args['document_id']))
        return retrieve_batch_documents(api_key, int(request.args['batch_id']), request.args.get('status'))
    except Exception as e:
        logging.error('Error retrieving documents: %s', e)
        return jsonify({'error': 'Internal server error'}), 500

def retrieve_single_document(api_key, document_id):
    document = safe_db_operation(document_service.get_document, document_id, session_factory=pipeline.session_factory)
    if not document:
        return jsonify({'error': 'Document not found'}), 404

    batch = safe_db_operation(batch_service.get_batch, document.batch_id, session_factory=pipeline.session_factory) if document.batch_id else None
    if not batch or batch.customer_id != api_key.customer_id:
        return jsonify({'error': 'Access denied'}), 403
    if document.validation_status != ValidationStatus.VALIDATED:
        return jsonify({'error': f"Document is not validated (status: {document.validation_status.value})"}), 400
    return jsonify({'document': document.serialize()}), 200

def retrieve_batch_documents(api_key, batch_id, status):
    batch = safe_db_operation(batch_service.get_batch, batch_id, session_factory=pipeline.session_factory)
    if not batch:
        return jsonify({'error': 'Batch not found'}), 404
    if batch.customer_id != api_key.customer_id:
        return jsonify({'error': 'Access denied'}), 403

    validation_status = ValidationStatus(status) if status else ValidationStatus.VALIDATED
    documents = safe_db_operation(document_service.get_documents_for_batch, batch_id, validation_status, session_factory=pipeline.session_factory)
    return jsonify({
        'batch': batch.serialize(),
        'documents': [document.serialize() for document in documents],
        'count': len(documents),
    }), 200

@app.route('/imports/<int:config_id>/scan', methods=['POST'])
@operator_only
def trigger_import_scan(config_id):
    import_config = safe_db_operation(import_service.get_import_config, config_id, session_factory=pipeline.session_factory)
    if not import_config:
        return jsonify({'error': 'Import config not found'}), 404
    summary = pipeline.scanner.scan(import_config)
    return jsonify(summary), 200

@app.route('/imports/<int:config_id>/logs', methods=['GET'])
@operator_only
def import_logs(config_id):
    logs = safe_db_operation(import_service.get_import_logs, config_id, request.args.get('file_path'), session_factory=pipeline.session_factory)
    return jsonify({'logs': [log.serialize() for log in logs]}), 200

@app.route('/jobs/<int:job_id>/status', methods=['GET'])
@operator_only
def get_job_status(job_id):
    job = pipeline.job_queue.get(job_id)
    if job:
        return jsonify({'JobStatus': job.status.value, 'Job': job.serialize()}), 200
    return jsonify({'error': "Job not found"}), 404

@app.route('/jobs/failed', methods=['GET'])
@operator_only
def list_failed_jobs():
    failed = pipeline.job_queue.list_failed(request.args.get('customer_id'))
    pending = pipeline.job_queue.list_pending_retries()
    return jsonify({
        'failed': [job.serialize() for job in failed],
        'pending_retries': [
            {'job_id': job.id, 'attempts': job.attempts, 'max_attempts': job.max_attempts,
             'next_retry_at': job.next_retry_at.isoformat(), 'last_error': job.last_error}
            for job in pending
        ],
    }), 200

@app.route('/jobs/retry', methods=['POST'])
@operator_only
def retry_failed_jobs():
    body = request.get_json(silent=True) or {}
    return jsonify(pipeline.job_queue.retry_all(body.get('customer_id'))), 200

@app.route('/jobs/<int:job_id>/cancel', methods=['POST'])
@operator_only
def cancel_job_retry(job_id):
    try:
        cancelled = pipeline.job_queue.cancel(job_id)
    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    if not cancelled:
        return jsonify({'error': f"Job {job_id} has no pending retry to cancel"}), 400
    return jsonify({'message': f"Retries for job {job_id} cancelled"}), 200

@app.route('/jobs/<int:job_id>/requeue', methods=['POST'])
@operator_only
def requeue_job(job_id):
    job = pipeline.job_queue.requeue(job_id)
    if not job:
        return jsonify({'error': "Job not found or not failed"}), 400
    return jsonify({'JobStatus': job.status.value, 'Job': job.serialize()}), 200

@app.route('/batches/<int:batch_id>/transition', methods=['POST'])
@operator_only
def transition_batch(batch_id):
    body = request.get_json(silent=True) or {}
    try:
        target = BatchStatus(body.get('status'))
    except ValueError:
        return jsonify({'error': f"Unknown batch status: {body.get('status')}"}), 400

    try:
        result = pipeline.state_machine.transition(batch_id, target, body.get('reason'))
    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except InvalidTransitionError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(result.serialize()), 200

@app.route('/batches/<int:batch_id>/reprocess', methods=['POST'])
@operator_only
def reprocess_batch(batch_id):
    try:
        job_ids = pipeline.state_machine.reprocess(batch_id)
    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except InvalidTransitionError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({'message': f"Queued {len(job_ids)} documents for extraction", 'JobIDs': job_ids}), 200

@app.route('/batches/<int:batch_id>/export', methods=['POST'])
@operator_only
def export_batch(batch_id):
    batch = safe_db_operation(batch_service.get_batch, batch_id, session_factory=pipeline.session_factory)
    if not batch:
        return jsonify({'error': 'Batch not found'}), 404
    job = pipeline.job_queue.enqueue(JobType.EXPORT_BATCH.value, {'batch_id': batch_id}, customer_id=batch.customer_id)
    return jsonify({'message': 'Export queued', 'JobID': job.id}), 202

@app.route('/batches/<int:batch_id>', methods=['DELETE'])
@operator_only
def delete_batch(batch_id):
    try:
        result = pipeline.state_machine.delete_batch(batch_id)
    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except Exception as e:
        logging.error('Error deleting batch %s: %s', batch_id, e)
        return jsonify({'error': f"Failed to delete batch {batch_id}"}), 500
    return jsonify(result), 200

@app.route('/batches/<int:batch_id>/duplicates/scan', methods=['POST'])
@operator_only
def scan_batch_duplicates(batch_id):
    body = request.get_json(silent=True) or {}
    results = pipeline.detector.scan_all(batch_id, cross_batch=bool(body.get('cross_batch')), thresholds=body.get('thresholds'))
    return jsonify(results), 200

@app.route('/batches/<int:batch_id>/duplicates', methods=['GET'])
@operator_only
def list_batch_duplicates(batch_id):
    status = request.args.get('status')
    try:
        duplicate_status = DuplicateStatus(status) if status else None
    except ValueError:
        return jsonify({'error': f"Unknown duplicate status: {status}"}), 400
    detections = safe_db_operation(duplicate_service.get_detections, batch_id, duplicate_status, session_factory=pipeline.session_factory)
    return jsonify({'duplicates': [detection.serialize() for detection in detections]}), 200

@app.route('/duplicates/<int:detection_id>/review', methods=['POST'])
@operator_only
def review_duplicate(detection_id):
    body = request.get_json(silent=True) or {}
    if not body.get('decision') or not body.get('reviewer'):
        return jsonify({'error': 'decision and reviewer are required'}), 400
    try:
        detection = pipeline.detector.review(detection_id, body['decision'], body['reviewer'])
    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except (ValueError, InvalidTransitionError) as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(detection.serialize()), 200

@app.route('/documents/<int:document_id>/validate', methods=['POST'])
@operator_only
def validate_document(document_id):
    body = request.get_json(silent=True) or {}
    try:
        document = pipeline.validator.validate(document_id, body.get('status'), body.get('validated_by'))
    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except InvalidInputError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(document.serialize()), 200

@app.route('/webhooks/<int:webhook_config_id>/test', methods=['POST'])
@operator_only
def test_webhook(webhook_config_id):
    try:
        result = pipeline.dispatcher.send_test(webhook_config_id)
    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    return jsonify(result.serialize()), 200

@app.route('/webhooks/<int:webhook_config_id>/diagnostics', methods=['GET'])
@operator_only
def webhook_diagnostics(webhook_config_id):
    diagnosis = diagnose(webhook_config_id, session_factory=pipeline.session_factory)
    return jsonify(diagnosis._asdict()), 200

@app.route('/webhooks/<int:webhook_config_id>/logs', methods=['GET'])
@operator_only
def webhook_delivery_logs(webhook_config_id):
    logs = safe_db_operation(webhook_service.get_delivery_logs, webhook_config_id, session_factory=pipeline.session_factory)
    return jsonify({'logs': [log.serialize() for log in logs]}), 200

def main():
    app.run(host='0.0.0.0', port=int(os.getenv('API_PORT', 8000)))

if __name__ == '__main__':
    main()
