import multiprocessing
import os

wsgi_app = "admissions.main:app"
bind = os.getenv("ADMISSIONS_BIND", "127.0.0.1:8000")
workers = int(os.getenv("ADMISSIONS_WORKERS", (multiprocessing.cpu_count() * 2) + 1))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 60
graceful_timeout = 30
loglevel = "info"
accesslog = "-"
errorlog = "-"
