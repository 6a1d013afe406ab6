from __future__ import annotations


# User-facing strings are pre-localised for the mobile client; codes stay stable.
MESSAGES: dict[str, str] = {
    "authentication_required": "يجب تسجيل الدخول أولاً",
    "permission_denied": "ليس لديك صلاحية لتنفيذ هذا الإجراء",
    "actor_blocked": "تم حظرك من تقديم الاقتراحات والتعديلات",
    "not_found": "السجل غير موجود أو تم حذفه",
    "version_conflict": "تم تعديل هذا السجل من مستخدم آخر، يرجى التحديث والمحاولة مرة أخرى",
    "locked_by_other": "السجل قيد التعديل من مستخدم آخر، يرجى المحاولة بعد قليل",
    "undo_in_progress": "جاري التراجع عن هذه العملية من مستخدم آخر",
    "validation_failed": "البيانات المدخلة غير صالحة",
    "batch_limit_exceeded": "عدد العمليات يتجاوز الحد المسموح",
    "cascade_confirm_required": "عدد الأحفاد يتجاوز الحد المسموح، يلزم تأكيد الحذف",
    "already_undone": "تم التراجع عن هذه العملية مسبقاً",
    "timeout": "انتهت مهلة العملية، يرجى المحاولة مرة أخرى",
    "internal_error": "حدث خطأ غير متوقع",
    "has_descendants": "لا يمكن حذف ملف له أبناء، استخدم الحذف المتسلسل",
    "not_undoable": "لا يمكن التراجع عن هذا النوع من العمليات",
    "undo_window_expired": "انتهت المدة المسموحة للتراجع عن هذه العملية",
    "undo_admin_only": "التراجع عن هذه العملية متاح للمشرفين فقط",
    "not_a_child": "الملف ليس من أبناء هذا الأب أو الأم",
    "duplicate_order": "لا يمكن تكرار نفس الترتيب لأكثر من ابن",
    "negative_order": "قيمة الترتيب يجب أن تكون صفراً أو أكثر",
    "empty_batch": "لا توجد عمليات للتنفيذ",
    "invalid_parent": "الأب أو الأم المحدد غير صالح",
    "parent_cycle": "لا يمكن أن يكون الشخص من أسلاف نفسه",
    "duplicate_marriage": "يوجد زواج حالي بين هذين الشخصين",
    "suggestion_rate_limited": "تجاوزت الحد اليومي للاقتراحات",
    "suggestion_reviewed": "تمت مراجعة هذا الاقتراح مسبقاً",
    "field_not_allowed": "لا يمكن تعديل هذا الحقل",
    "undo_success": "تم التراجع بنجاح",
    "undo_partial": "تم التراجع جزئياً، بعض السجلات لم تتم استعادتها",
}


def message_for(key: str) -> str:
    return MESSAGES.get(key, MESSAGES["internal_error"])
