class JobError(Exception):
    """Base exception for background job errors."""
    pass

class JobNotFoundError(JobError):
    def __init__(self, job_id):
        super().__init__(f"Job {job_id} not found")

class UnsupportedJobTypeError(JobError):
    def __init__(self, job_type):
        super().__init__(f"Job type {job_type} is not supported")

class MissingJobParametersError(JobError):
    pass

class JobExecutionError(JobError):
    pass

class WorkflowError(Exception):
    """Base exception for workflow orchestration errors raised to callers."""
    pass

class CatalogProductNotFoundError(WorkflowError):
    def __init__(self, catalog_product_id):
        super().__init__(f"Catalog product {catalog_product_id} not found")

class CatalogNotFoundError(WorkflowError):
    def __init__(self, catalog_id):
        super().__init__(f"Catalog {catalog_id} not found")

class ProductNotFoundError(WorkflowError):
    def __init__(self, product_id, where: str = "staging system"):
        super().__init__(f"Product {product_id} not found in {where}")

class LocaleNotFoundError(WorkflowError):
    def __init__(self, locale):
        super().__init__(f"Locale {locale} not found")

class SourceContentNotFoundError(WorkflowError):
    def __init__(self, product_id, locale_code):
        super().__init__(f"Source content not found for product {product_id} in locale {locale_code}")

class WorkflowJobNotFoundError(WorkflowError):
    def __init__(self, workflow_job_id):
        super().__init__(f"Workflow job {workflow_job_id} not found")

class InvalidWorkflowRequestError(WorkflowError):
    pass
