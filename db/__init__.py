from .db import (
    get_engine,
    get_session,
    create_all,
    dispose_engine,
    upsert_user,
    get_user,
    list_users,
    delete_user,
    insert_message,
    list_messages,
    insert_scheduled_message,
    get_scheduled_message,
    list_scheduled_messages,
    list_pending_scheduled_messages,
    transition_scheduled_message,
    cancel_scheduled_message,
    claim_scheduled_message,
    insert_calendar_event,
    get_calendar_event,
    list_calendar_events,
    fetch_due_calendar_events,
    claim_calendar_event,
    release_calendar_event,
    mark_reminder_sent,
    insert_notification_log,
    list_notification_logs,
    get_setting,
    set_setting,
    list_settings,
    SCHEDULED_STATUSES,
    MESSAGE_TYPES,
)  # noqa: F401
