import os
import json
import pika
import logging
from scanflow.services.rabbitmq.rabbit_service import create_connection_params, publish_message

class JobPublisher:
    """Announces job ids on the work queue so an idle worker picks them up."""

    def __init__(self, queue=None):
        self.queue = queue or os.getenv('JOB_QUEUE', 'scanflow-jobs')
        self.connection = None
        self.channel = None

    def connect(self):
        self.connection = pika.BlockingConnection(create_connection_params())
        self.channel = self.connection.channel()
        self.channel.queue_declare(queue=self.queue)

    def disconnect(self):
        if self.connection and self.connection.is_open:
            self.connection.close()
        self.connection = None
        self.channel = None

    def publish(self, job_id):
        body = json.dumps({'job_id': job_id})
        self.connect()
        try:
            self.channel = publish_message(self.channel, self.queue, body)
            logging.info(f"Published job {job_id} to {self.queue}")
        finally:
            self.disconnect()
