"""
Starter automation templates.

Static catalogue served by GET /automations/templates. Clients copy a
template into a new rule and adjust it.
"""
from pyra_engine.schemas.automation import AutomationTemplate


AUTOMATION_TEMPLATES: list[AutomationTemplate] = [
    AutomationTemplate.model_validate(template)
    for template in (
        {
            "id": "tpl_file_upload_notify",
            "name": "File upload notification",
            "description": "Notify the admin when a new file is uploaded",
            "trigger_event_type": "file_uploaded",
            "conditions": [],
            "actions": [
                {
                    "type": "create_notification",
                    "config": {
                        "recipient": "admin",
                        "notification_type": "file_upload",
                        "title": "New file: {{file_name}}",
                        "message": "{{display_name}} uploaded {{file_name}}",
                    },
                },
            ],
        },
        {
            "id": "tpl_overdue_reminder",
            "name": "Overdue invoice reminder",
            "description": "Create a notification when an invoice passes its due date",
            "trigger_event_type": "invoice_overdue",
            "conditions": [],
            "actions": [
                {
                    "type": "create_notification",
                    "config": {
                        "recipient": "admin",
                        "notification_type": "invoice_overdue",
                        "title": "Overdue invoice: {{invoice_number}}",
                        "message": "Invoice {{invoice_number}} for {{client_name}} is overdue",
                    },
                },
            ],
        },
        {
            "id": "tpl_quote_to_invoice",
            "name": "Quote signed notification",
            "description": "Tell the team when a client signs a quote",
            "trigger_event_type": "quote_signed",
            "conditions": [],
            "actions": [
                {
                    "type": "create_notification",
                    "config": {
                        "recipient": "admin",
                        "notification_type": "quote_signed",
                        "title": "Quote signed: {{quote_number}}",
                        "message": "{{client_name}} signed quote {{quote_number}}",
                    },
                },
                {
                    "type": "log_activity",
                    "config": {
                        "action_type": "quote_signed_automation",
                        "message": "Quote {{quote_number}} signed, ready to invoice",
                    },
                },
            ],
        },
        {
            "id": "tpl_invoice_paid_complete",
            "name": "Close project on payment",
            "description": "Mark the project completed once its invoice is paid",
            "trigger_event_type": "invoice_paid",
            "conditions": [
                {"field": "project_id", "operator": "is_not_empty"},
            ],
            "actions": [
                {
                    "type": "change_project_status",
                    "config": {"project_id": "{{project_id}}", "new_status": "completed"},
                },
            ],
        },
    )
]
