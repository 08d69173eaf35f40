import time
import logging
import scanflow.scanner.config as config
from scanflow.pipeline import Pipeline
from scanflow.services.rabbitmq.job_publisher import JobPublisher

logging.basicConfig(filename='./scanner-log.txt', level=logging.INFO)

def run_forever(scanner, interval=config.SCAN_INTERVAL_SECONDS):
    while True:
        try:
            results = scanner.run_cycle()
            logging.info(f"Scan cycle finished for {len(results)} import configs")
        except Exception as e:
            logging.error('Error in scan cycle: %s', e)
        time.sleep(interval)

def main():
    pipeline = Pipeline(publisher=JobPublisher())
    run_forever(pipeline.scanner)

if __name__ == "__main__":
    main()
