import time
import pika
import json
import logging
import scanflow.worker.config as config
import scanflow.services.database.batch_service as batch_service
import scanflow.services.database.document_service as document_service
from pika.exceptions import AMQPConnectionError
from scanflow.models.project import DEFAULT_EXTRACTION_FIELDS
from scanflow.pipeline import Pipeline
from scanflow.services.database.database import safe_db_operation
from scanflow.services.rabbitmq.job_publisher import JobPublisher
from scanflow.services.rabbitmq.rabbit_service import create_connection_params
from scanflow.shared.batch_status import BatchStatus
from scanflow.shared.errors import InvalidInputError, InvalidTransitionError, NotFoundError
from scanflow.shared.events import DocumentExtracted
from scanflow.shared.job_type import JobType
from scanflow.shared.validation_status import ValidationStatus

logging.basicConfig(filename='./worker-log.txt', level=logging.INFO)
pipeline = None
connection = None
consume_channel = None

DEFAULT_CONFIDENCE_THRESHOLD = 0.8
NON_RETRYABLE_ERRORS = (InvalidInputError, InvalidTransitionError, NotFoundError)

def handle_extract_document(pipeline, job):
    document_id = (job.payload or {}).get('document_id')
    if not document_id:
        raise InvalidInputError(f"Job {job.id} has no document_id")

    document = safe_db_operation(document_service.get_document, document_id, session_factory=pipeline.session_factory)
    if not document:
        raise NotFoundError(f"Document {document_id} not found")

    project = safe_db_operation(batch_service.get_project, document.project_id, session_factory=pipeline.session_factory)
    fields = (project.extraction_fields if project else None) or DEFAULT_EXTRACTION_FIELDS
    threshold = project.confidence_threshold if project and project.confidence_threshold is not None else DEFAULT_CONFIDENCE_THRESHOLD

    reference = pipeline.document_store.presigned_url(document.storage_key) if document.storage_key else document.file_url
    result = pipeline.extraction_client.extract(reference, fields)
    document = safe_db_operation(document_service.apply_extraction, document_id, result, threshold, session_factory=pipeline.session_factory)

    needs_review = document.validation_status == ValidationStatus.NEEDS_REVIEW
    pipeline.event_bus.publish(DocumentExtracted(
        document_id=document.id,
        batch_id=document.batch_id,
        confidence_score=document.confidence_score,
        needs_review=needs_review,
        customer_id=job.customer_id,
    ))

    if document.batch_id:
        try:
            pipeline.state_machine.refresh(document.batch_id)
        except InvalidTransitionError as e:
            # another worker advanced the batch first
            logging.info(f"Batch {document.batch_id} already moved on: {e}")

    return {'document_id': document.id, 'fields': len(result.fields), 'confidence_score': document.confidence_score, 'needs_review': needs_review}

def handle_export_batch(pipeline, job):
    batch_id = (job.payload or {}).get('batch_id')
    if not batch_id:
        raise InvalidInputError(f"Job {job.id} has no batch_id")
    return pipeline.state_machine.transition(batch_id, BatchStatus.EXPORTED, 'export job').serialize()

def handle_deliver_webhook(pipeline, job):
    return pipeline.dispatcher.handle_delivery_job(job)

JOB_HANDLERS = {
    JobType.EXTRACT_DOCUMENT.value: handle_extract_document,
    JobType.EXPORT_BATCH.value: handle_export_batch,
    JobType.DELIVER_WEBHOOK.value: handle_deliver_webhook,
}

def process_job(pipeline, job_id=None):
    job = pipeline.job_queue.claim(job_id)
    if not job:
        return None

    logging.info(f"Processing {job.job_type} job {job.id}, attempt {job.attempts + 1} of {job.max_attempts + 1}")
    try:
        handler = JOB_HANDLERS.get(job.job_type)
        if not handler:
            raise InvalidInputError(f"Unknown job type {job.job_type}")
        result = handler(pipeline, job)
        return pipeline.job_queue.complete(job.id, result)
    except NON_RETRYABLE_ERRORS as e:
        logging.error('Job %s cannot be processed: %s', job.id, e)
        return pipeline.job_queue.fail(job.id, e, retryable=False)
    except Exception as e:
        logging.error('Error processing job %s: %s', job.id, e)
        return pipeline.job_queue.fail(job.id, e)

def sweep_due_jobs(pipeline):
    processed = 0
    for job_id in pipeline.job_queue.due_job_ids():
        if process_job(pipeline, job_id):
            processed += 1
    if processed:
        logging.info(f"Sweep processed {processed} due jobs")
    return processed

def callback(ch, method, properties, body):
    try:
        message = json.loads(body)
        process_job(pipeline, message.get('job_id'))
    except Exception as e:
        logging.error('Error processing job message: %s', e)

    ch.basic_ack(delivery_tag=method.delivery_tag)

def schedule_sweep():
    try:
        sweep_due_jobs(pipeline)
    except Exception as e:
        logging.error('Error sweeping due jobs: %s', e)
    connection.call_later(config.JOB_SWEEP_INTERVAL_SECONDS, schedule_sweep)

def start_connection():
    global connection
    global consume_channel

    try:
        connection = pika.BlockingConnection(create_connection_params())
        consume_channel = connection.channel()
        consume_channel.queue_declare(queue=config.JOB_QUEUE)
        consume_channel.basic_qos(prefetch_count=1)
        consume_channel.basic_consume(queue=config.JOB_QUEUE, on_message_callback=callback)
        connection.call_later(config.JOB_SWEEP_INTERVAL_SECONDS, schedule_sweep)

        logging.info('Waiting for messages.')
        consume_channel.start_consuming()

    except AMQPConnectionError as e:
        logging.error('AMQP Connection Error: %s', e)
        raise
    finally:
        if connection and connection.is_open:
            connection.close()

def main():
    global pipeline
    pipeline = Pipeline(publisher=JobPublisher(config.JOB_QUEUE))
    pipeline.start()
    sweep_due_jobs(pipeline)

    try:
        while True:
            try:
                start_connection()
            except Exception as e:
                logging.error('Error in start_connection: %s', e)
                logging.info('Restarting start_connection after encountering an error.')
                time.sleep(10)
    finally:
        pipeline.shutdown()

if __name__ == "__main__":
    main()
