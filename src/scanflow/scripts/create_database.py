from scanflow.services.database.database import Base, engine
import scanflow.models.project
import scanflow.models.batch
import scanflow.models.document
import scanflow.models.job
import scanflow.models.import_config
import scanflow.models.import_log
import scanflow.models.duplicate_detection
import scanflow.models.webhook_config
import scanflow.models.webhook_delivery_log
import scanflow.models.api_key


def create_tables(bind=engine):
    Base.metadata.create_all(bind=bind)

if __name__ == "__main__":
    create_tables()
