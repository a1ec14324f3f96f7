"""
Official workflow templates seeded into workflow_templates
"""
from typing import Any, Dict, List

CLIENT_ONBOARDING: Dict[str, Any] = {
    "name": "Client Onboarding",
    "description": "Automated client onboarding process",
    "trigger": {"type": "event", "event": "client.created"},
    "steps": [
        {
            "id": "send_welcome_email",
            "name": "Send Welcome Email",
            "type": "email",
            "config": {
                "template": "client_welcome",
                "to": "{{client.email}}",
                "subject": "Welcome aboard, {{client.name}}!",
                "body": "Hi {{client.name}}, welcome aboard!",
            },
        },
        {
            "id": "create_onboarding_project",
            "name": "Create Onboarding Project",
            "type": "action",
            "config": {
                "action": "createProject",
                "params": {
                    "name": "{{client.name}} - Onboarding",
                    "ownerId": "{{client.id}}",
                    "status": "active",
                },
            },
        },
        {
            "id": "schedule_kickoff_meeting",
            "name": "Schedule Kickoff Meeting",
            "type": "meeting",
            "config": {
                "title": "Kickoff Meeting with {{client.name}}",
                "duration": 60,
                "participants": ["{{client.email}}"],
            },
        },
        {
            "id": "wait_for_contract",
            "name": "Wait for Contract Signature",
            "type": "wait",
            "config": {"event": "contract.signed", "timeout": "7d"},
        },
        {
            "id": "activate_services",
            "name": "Activate Client Services",
            "type": "action",
            "config": {
                "action": "activateClientServices",
                "params": {"clientId": "{{client.id}}"},
            },
        },
        {
            "id": "send_activation_email",
            "name": "Send Activation Confirmation",
            "type": "email",
            "config": {
                "template": "services_activated",
                "to": "{{client.email}}",
                "subject": "Your services are now active!",
            },
        },
    ],
}

INVOICE_FOLLOWUP: Dict[str, Any] = {
    "name": "Invoice Follow-up",
    "description": "Automated follow-up for overdue invoices",
    "trigger": {"type": "event", "event": "invoice.overdue"},
    "steps": [
        {
            "id": "send_first_reminder",
            "name": "Send First Reminder",
            "type": "email",
            "config": {
                "template": "payment_reminder_1",
                "to": "{{invoice.clientEmail}}",
                "subject": "Payment Reminder - Invoice #{{invoice.number}}",
            },
        },
        {
            "id": "wait_3_days",
            "name": "Wait 3 Days",
            "type": "wait",
            "config": {"duration": "3d"},
        },
        {
            "id": "check_payment_status",
            "name": "Check if Paid",
            "type": "condition",
            "config": {
                "condition": 'context.variables.invoice.status === "paid"',
                "thenSteps": ["send_thank_you"],
                "elseSteps": ["send_second_reminder", "create_follow_up_task", "send_notification"],
            },
        },
        {
            "id": "send_thank_you",
            "name": "Send Thank You",
            "type": "email",
            "config": {
                "template": "payment_thank_you",
                "to": "{{invoice.clientEmail}}",
                "subject": "Thank you for your payment - Invoice #{{invoice.number}}",
            },
        },
        {
            "id": "send_second_reminder",
            "name": "Send Second Reminder",
            "type": "email",
            "config": {
                "template": "payment_reminder_2",
                "to": "{{invoice.clientEmail}}",
                "subject": "Urgent: Payment Overdue - Invoice #{{invoice.number}}",
            },
        },
        {
            "id": "create_follow_up_task",
            "name": "Create Follow-up Task",
            "type": "action",
            "config": {
                "action": "createTask",
                "params": {
                    "title": "Follow up on overdue invoice #{{invoice.number}}",
                    "priority": "high",
                    "assignedTo": "admin",
                },
            },
        },
        {
            "id": "send_notification",
            "name": "Notify Admin",
            "type": "notification",
            "config": {
                "title": "Overdue Invoice Requires Attention",
                "message": "Invoice #{{invoice.number}} is {{invoice.daysOverdue}} days overdue",
                "userId": "admin",
                "type": "warning",
            },
        },
    ],
}

PROJECT_COMPLETION: Dict[str, Any] = {
    "name": "Project Completion",
    "description": "Automated tasks when project is completed",
    "trigger": {"type": "event", "event": "project.completed"},
    "steps": [
        {
            "id": "generate_final_invoice",
            "name": "Generate Final Invoice",
            "type": "action",
            "config": {
                "action": "generateInvoice",
                "params": {
                    "projectId": "{{project.id}}",
                    "type": "final",
                    "amount": "{{project.remainingBalance}}",
                },
            },
        },
        {
            "id": "send_completion_email",
            "name": "Send Completion Email",
            "type": "email",
            "config": {
                "template": "project_completed",
                "to": "{{project.clientEmail}}",
                "subject": "Project Completed: {{project.name}}",
            },
        },
        {
            "id": "wait_2_days",
            "name": "Wait 2 Days",
            "type": "wait",
            "config": {"duration": "2d"},
        },
        {
            "id": "request_feedback",
            "name": "Request Client Feedback",
            "type": "email",
            "config": {
                "template": "feedback_request",
                "to": "{{project.clientEmail}}",
                "subject": "How was your experience with {{project.name}}?",
            },
        },
        {
            "id": "archive_project",
            "name": "Archive Project",
            "type": "action",
            "config": {
                "action": "archiveProject",
                "params": {"projectId": "{{project.id}}"},
            },
        },
    ],
}

LEAD_QUALIFICATION: Dict[str, Any] = {
    "name": "Lead Qualification",
    "description": "AI-assisted BANT qualification of new leads",
    "trigger": {"type": "event", "event": "client.created"},
    "steps": [
        {
            "id": "qualify_lead",
            "name": "Qualify Lead",
            "type": "ai_decision",
            "config": {
                "decisionType": "lead_qualification",
                "prompt": "Qualify the lead {{client.name}} ({{client.company}}). Notes: {{client.notes}}",
                "options": ["qualified", "nurture", "disqualified"],
            },
        },
        {
            "id": "create_sales_task",
            "name": "Create Sales Follow-up Task",
            "type": "action",
            "condition": 'steps.qualify_lead.decision === "qualified"',
            "config": {
                "action": "createTask",
                "params": {
                    "title": "Call qualified lead {{client.name}}",
                    "priority": "high",
                    "assignedTo": "sales",
                },
            },
        },
        {
            "id": "notify_sales",
            "name": "Notify Sales",
            "type": "notification",
            "config": {
                "title": "Lead qualification: {{client.name}}",
                "message": "Decision: {{steps.qualify_lead.decision}} ({{steps.qualify_lead.reasoning}})",
                "userId": "sales",
                "type": "info",
            },
        },
    ],
}

OFFICIAL_TEMPLATES: List[Dict[str, Any]] = [
    {
        "name": "Client Onboarding",
        "category": "Sales",
        "description": "Automated client onboarding workflow with welcome email, project creation, and kickoff meeting",
        "icon": "👋",
        "definition": CLIENT_ONBOARDING,
    },
    {
        "name": "Invoice Follow-up",
        "category": "Finance",
        "description": "Automated invoice follow-up for overdue payments",
        "icon": "💰",
        "definition": INVOICE_FOLLOWUP,
    },
    {
        "name": "Project Completion",
        "category": "Project Management",
        "description": "Workflow triggered when project is completed",
        "icon": "✅",
        "definition": PROJECT_COMPLETION,
    },
    {
        "name": "Lead Qualification",
        "category": "Sales",
        "description": "Qualify new leads with an AI decision and route qualified ones to sales",
        "icon": "🎯",
        "definition": LEAD_QUALIFICATION,
    },
]
