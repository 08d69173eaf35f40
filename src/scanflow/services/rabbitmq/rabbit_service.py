import os
import pika
import ssl
import logging
import time
from pika.exceptions import ConnectionClosed, ChannelClosed

def create_connection_params():
    credentials = pika.PlainCredentials(os.getenv('RABBITMQ_USERNAME', 'guest'), os.getenv('RABBITMQ_PASSWORD', 'guest'))
    port = int(os.getenv('RABBITMQ_PORT', 5672))

    # 5671 is the AMQPS port
    ssl_options = pika.SSLOptions(ssl.SSLContext(ssl.PROTOCOL_TLSv1_2)) if port == 5671 else None
    return pika.ConnectionParameters(
        host=os.getenv('RABBITMQ_HOST', 'localhost'),
        port=port,
        credentials=credentials,
        heartbeat=600,
        ssl_options=ssl_options,
        virtual_host=os.getenv('RABBITMQ_VHOST', '/'),
    )

def publish_message(channel, queue, message, publish_attempts=5):
    """Publish with reconnects. Returns the channel that finally carried the message."""
    for attempt in range(publish_attempts):
        try:
            channel.basic_publish(exchange='',
                                  routing_key=queue,
                                  body=message)
            return channel
        except (ConnectionClosed, ChannelClosed) as e:
            logging.error("Connection or channel closed while publishing, reconnecting: %s", e)
            connection = pika.BlockingConnection(create_connection_params())
            channel = connection.channel()
            channel.queue_declare(queue=queue)
        time.sleep(2 ** attempt)
    raise ConnectionError(f"Failed to publish message to {queue} after {publish_attempts} attempts")
