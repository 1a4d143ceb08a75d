#!/usr/bin/env python3
import streamlit as st

from marksheet_digitizer.aggregate import AggregationStore
from marksheet_digitizer.config_io import load_settings
from marksheet_digitizer.export_core import XLSX_MIME, build_rows, export_bytes
from marksheet_digitizer.log import setup_logging
from marksheet_digitizer.ocr_client import ExtractionError, GeminiMarksheetReader
from marksheet_digitizer.queue_core import DONE, ERROR, PENDING, PROCESSING, ProcessingQueue, ReviewSession
from marksheet_digitizer.roster import RosterError, parse_roster, reconcile, render_merged_csv
from marksheet_digitizer.snapshot_io import SnapshotStore
from marksheet_digitizer.tools.sheet_images import ImageInputError, decode_upload, encode_for_ocr, page_names

st.set_page_config(page_title="MarkSheet Digitizer", layout="wide")
st.title("MarkSheet Digitizer")

STATUS_ICON = {PENDING: "⏳", PROCESSING: "🔄", DONE: "✅", ERROR: "⚠️"}


# ---------- session state ----------
def _init_state():
    if "settings" not in st.session_state:
        st.session_state.settings = load_settings()
        setup_logging(st.session_state.settings.log_level)
    if "store" not in st.session_state:
        s = st.session_state.settings
        st.session_state.store = AggregationStore(SnapshotStore(s.store_dir), key=s.store_key)
    if "queue" not in st.session_state:
        st.session_state.queue = ProcessingQueue()
    if "review" not in st.session_state:
        st.session_state.review = ReviewSession(st.session_state.store, st.session_state.queue)
    st.session_state.setdefault("seen_uploads", set())


_init_state()
settings = st.session_state.settings
store: AggregationStore = st.session_state.store
queue: ProcessingQueue = st.session_state.queue
review: ReviewSession = st.session_state.review

with st.sidebar:
    st.header("Setup")
    api_key = st.text_input("Gemini API key", value=settings.api_key or "", type="password")
    st.metric("Processed sheets", len(store.sheets))

tab1, tab2, tab3 = st.tabs(["Upload & Review", "Consolidated Results", "Merge Roster"])

# ============ Upload & Review ============
with tab1:
    left, right = st.columns(2)

    with left:
        st.header("Upload mark-sheets")
        uploads = st.file_uploader(
            "Images or PDF scans",
            type=["jpg", "jpeg", "png", "webp", "pdf"],
            accept_multiple_files=True,
        )
        for up in uploads or []:
            if up.file_id in st.session_state.seen_uploads:
                continue
            st.session_state.seen_uploads.add(up.file_id)
            try:
                pages = decode_upload(up.getvalue(), up.name, dpi=settings.pdf_dpi)
            except ImageInputError as e:
                st.error(str(e))
                continue
            for name, page in zip(page_names(up.name, len(pages)), pages):
                queue.add(name, encode_for_ocr(page, settings.max_image_side))

        if queue.items:
            st.subheader("Processing queue")
            for idx, item in enumerate(list(queue.items)):
                c1, c2 = st.columns([5, 1])
                label = f"{STATUS_ICON.get(item.status, '')} {item.name} - {item.status}"
                if item.status == DONE:
                    label += f" - Reg No {item.result.reg_no}"
                    if item.result.reg_no in store:
                        label += " (already in table)"
                if item.error:
                    label += f" - {item.error}"
                c1.write(label)
                if item.status != PROCESSING and c2.button("Remove", key=f"rm_{idx}"):
                    queue.remove(idx)
                    st.rerun()

            if st.button("Process queue", disabled=not queue.pending()):
                try:
                    reader = GeminiMarksheetReader(
                        api_key=api_key or settings.api_key,
                        model=settings.model,
                        retries=settings.ocr_retries,
                        retry_delay=settings.ocr_retry_delay,
                    )
                except ExtractionError as e:
                    st.error(str(e))
                else:
                    total = len(queue.pending())
                    bar = st.progress(0)
                    seen = []

                    def _on_update(item):
                        if item.status in (DONE, ERROR):
                            seen.append(item)
                            bar.progress(round(100 * len(seen) / total))

                    summary = queue.process(reader, on_update=_on_update)
                    review.load_next()
                    st.success(f"{summary.done} extracted, {summary.failed} failed.")
                    st.rerun()
        else:
            st.info("Upload mark-sheet images to begin.")

    with right:
        st.header("Review & finalize")
        if review.current is None:
            review.load_next()
        candidates = review.candidates()
        if candidates:
            regs = [it.result.reg_no for it in candidates]
            current = review.current.reg_no if review.current else None
            chosen = st.selectbox(
                "Sheet to review", regs,
                index=regs.index(current) if current in regs else None,
                format_func=lambda r: f"{r} (replaces existing)" if r in store else r,
                placeholder="Pick a sheet to review again",
            )
            if chosen is not None and chosen != current:
                review.select(chosen)

        sheet = review.current
        if sheet is None:
            st.info("Process images to review marks.")
        else:
            st.caption(f"Reviewing Register No: {sheet.reg_no}. Edit if needed, then finalize.")
            if sheet.reg_no in store:
                st.warning(f"Register No {sheet.reg_no} is already in the table; finalizing replaces it.")
            grid = [
                {"Question": m.question, "Extracted": m.extracted_mark, "Corrected": m.corrected_mark}
                for m in sheet.marks
            ]
            edited = st.data_editor(
                grid, disabled=["Question", "Extracted"], hide_index=True, key=f"editor_{sheet.reg_no}",
            )
            total = st.text_input(
                f"Total marks (extracted: {sheet.extracted_total or 'N/A'})",
                value=sheet.corrected_total or "", key=f"total_{sheet.reg_no}",
            )
            if st.button(f"Finalize sheet for {sheet.reg_no}", type="primary"):
                for row in edited:
                    sheet.set_mark(row["Question"], str(row["Corrected"] or ""))
                sheet.set_total(total)
                review.finalize()
                st.success(f"Sheet for Reg No: {sheet.reg_no} added to results.")
                st.rerun()

# ============ Consolidated Results ============
with tab2:
    st.header("Consolidated marks")
    if not store.sheets:
        st.info("No sheets finalized yet.")
    else:
        rows = build_rows(store.data)
        st.dataframe([dict(zip(rows[0], r)) for r in rows[1:]], hide_index=True)

        c1, c2 = st.columns(2)
        with c1:
            st.download_button(
                "Export to Excel", export_bytes(store.data, "xlsx"),
                file_name="consolidated_marks_data.xlsx", mime=XLSX_MIME,
            )
            st.download_button(
                "Export to CSV", export_bytes(store.data, "csv"),
                file_name="consolidated_marks_data.csv", mime="text/csv",
            )
        with c2:
            victim = st.selectbox("Delete sheet", [""] + sorted(store.sheets))
            if victim and st.button(f"Delete {victim}"):
                store.delete(victim)
                st.rerun()
            if st.checkbox("I understand clearing is irreversible") and st.button("Clear all data"):
                store.clear()
                st.rerun()

# ============ Merge Roster ============
with tab3:
    st.header("Merge with a student roster")
    st.caption(
        f"Register numbers are matched to '{settings.identity_header}' by their last 3 characters. "
        "Question columns such as \"1\", \"6.a\" or \"Total\" receive the matching marks."
    )
    roster_file = st.file_uploader("Roster CSV", type=["csv"], key="roster")
    if roster_file is not None:
        try:
            table = parse_roster(
                roster_file.getvalue(),
                identity_header=settings.identity_header,
                name_header=settings.name_header,
                scan_lines=settings.header_scan_lines,
            )
        except RosterError as e:
            st.error(str(e))
        else:
            st.write("Detected headers:", ", ".join(table.headers))
            if not store.sheets:
                st.warning("No consolidated marks found. Process some mark-sheets first.")
            elif st.button("Merge data"):
                rows, updated = reconcile(
                    table.rows, store.data, headers=table.headers, identity_header=settings.identity_header,
                )
                if updated:
                    st.success(f"{updated} student(s) marks updated.")
                else:
                    st.info("No matching students found or no new marks to update.")
                st.dataframe(rows, hide_index=True)
                st.download_button(
                    "Download merged CSV", render_merged_csv(table, rows),
                    file_name=f"merged_{roster_file.name}", mime="text/csv",
                )
