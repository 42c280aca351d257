from prometheus_client import Counter


scheduler_scans_total = Counter(
    "maintenance_reminder_scans_total",
    "Total maintenance reminder scan cycles",
)

scheduler_scans_skipped_total = Counter(
    "maintenance_reminder_scans_skipped_total",
    "Scans skipped because another scan was still running",
)

scheduler_outcomes_total = Counter(
    "maintenance_reminder_scan_outcomes_total",
    "Scheduled maintenance rows evaluated by the scanner, by outcome",
    ["outcome"],
)

queue_enqueued_total = Counter(
    "maintenance_reminder_jobs_enqueued_total",
    "Reminder jobs admitted to the queue",
    ["backend"],
)

queue_duplicates_total = Counter(
    "maintenance_reminder_jobs_duplicate_total",
    "Enqueue calls ignored because an identical job was outstanding",
    ["backend"],
)

queue_retries_total = Counter(
    "maintenance_reminder_job_retries_total",
    "Reminder job attempts rescheduled after a failure",
    ["backend"],
)

queue_failed_total = Counter(
    "maintenance_reminder_jobs_failed_total",
    "Reminder jobs that exhausted their attempts or could not run",
    ["backend"],
)

reminders_sent_total = Counter(
    "maintenance_reminder_emails_sent_total",
    "Maintenance reminder emails accepted by the provider",
)

reminders_send_failed_total = Counter(
    "maintenance_reminder_emails_failed_total",
    "Maintenance reminder email send attempts that failed",
)
