from brankas.models.audit import ApiLog, SubmissionKey
