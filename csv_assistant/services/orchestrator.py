"""
Chat orchestrator.

ChatOrchestrator owns the session state (dataset, profiles, cards, chat
history) and is its only writer. Every other component is a function over
snapshots. Each public method that changes state persists a snapshot to the
session store.
"""
import json
import uuid
import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple
from csv_assistant.core.config import get_settings
from csv_assistant.core.errors import (
    ActionValidationError, AssistantError, ExecutionError, ParseError
)
from csv_assistant.core.logging import SessionLoggerAdapter
from csv_assistant.core.schemas import (
    AiAction, AnalysisCard, AnalysisPlan, CardContext, CardFilter, ChatMessage, ChatTurnResult,
    ClarificationOption, ClarificationRequestAction, DomAction, DomActionAction, ExecuteCodeAction,
    FilterSpreadsheetAction, MemoryDocument, PlanCreationAction, ProgressMessage, Row,
    SessionSnapshot, SpreadsheetFilter, TextResponseAction, ValidationContext, utcnow,
)
from csv_assistant.core.storage import SessionStore, get_session_store
from csv_assistant.services import ai_client, prompts
from csv_assistant.services.aggregation import execute_plan
from csv_assistant.services.data_preparer import prepare_dataset
from csv_assistant.services.filter_generator import generate_filter_function
from csv_assistant.services.memory import KeywordMemoryStore, MemoryStore
from csv_assistant.services.plan_generator import generate_analysis_plans
from csv_assistant.services.profiler import profile_columns
from csv_assistant.services.response_schemas import CHAT_ACTIONS_SCHEMA
from csv_assistant.services.sandbox import apply_row_filter, dry_run_transform, run_transform
from csv_assistant.services.summarizer import (
    generate_core_analysis_summary, generate_final_summary, generate_proactive_insight, generate_summary
)
from csv_assistant.services.validator import coerce_plan, normalize_actions, plan_errors, validate_action

logger = logging.getLogger(__name__)

INITIAL_SAMPLE_ROWS = 20
FILTER_SAMPLE_ROWS = 5
CORE_SUMMARY_CARD_ROWS = 10
CORE_SUMMARY_DOC_ID = 'core-summary'
RETRY_FEEDBACK_HEADER = "Your last response failed. Fix these errors:"


def new_card_id() -> str:
    return f"card-{uuid.uuid4().hex[:12]}"


def first_language(summary: str) -> str:
    """Bilingual summaries are 'English --- Other'; keep the first part."""
    return summary.split('---')[0].strip()


class ChatOrchestrator:
    """Single writer of one analysis session."""

    def __init__(
        self,
        session_id: Optional[str] = None,
        store: Optional[SessionStore] = None,
        memory: Optional[MemoryStore] = None,
        state: Optional[SessionSnapshot] = None,
    ):
        self.state = state or SessionSnapshot(session_id=session_id or uuid.uuid4().hex)
        self.store = store if store is not None else get_session_store()
        self.memory = memory if memory is not None else KeywordMemoryStore()
        self.ui_events: List[Dict[str, Any]] = []
        self.log = SessionLoggerAdapter(logger, {'session_id': self.state.session_id})

    @property
    def session_id(self) -> str:
        return self.state.session_id

    # --- persistence -------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        """A deep copy of the current state, memory documents included."""
        snapshot = self.state.model_copy(deep=True)
        snapshot.memory_documents = self.memory.documents()
        return snapshot

    @classmethod
    def restore(cls, snapshot: SessionSnapshot, store: Optional[SessionStore] = None,
                memory: Optional[MemoryStore] = None) -> "ChatOrchestrator":
        orchestrator = cls(store=store, memory=memory, state=snapshot.model_copy(deep=True))
        orchestrator.memory.rehydrate(snapshot.memory_documents)
        return orchestrator

    def _persist(self) -> None:
        self.state.updated_at = utcnow()
        payload = self.snapshot().model_dump(mode='json')
        if not self.store.save(self.session_id, payload, get_settings().session_ttl_seconds):
            self.log.warning("Failed to persist session snapshot")

    # --- state helpers -----------------------------------------------------

    def add_progress(self, text: str, type: str = 'system') -> None:
        self.state.progress_messages.append(ProgressMessage(text=text, type=type))
        if type == 'error':
            self.log.warning(text)
        else:
            self.log.info(text)

    def _add_message(self, sender: str, text: str, type: str = 'ai_message', **kwargs) -> ChatMessage:
        message = ChatMessage(sender=sender, text=text, type=type, **kwargs)
        self.state.chat_history.append(message)
        return message

    def _report_error(self, error: Exception) -> None:
        self.add_progress(f"Error: {error}", 'error')
        self._add_message('ai', f"Sorry, I encountered an issue: {error}", is_error=True)

    def find_card(self, card_id: str) -> Optional[AnalysisCard]:
        return next((c for c in self.state.analysis_cards if c.id == card_id), None)

    def card_contexts(self, max_rows: Optional[int] = None) -> List[CardContext]:
        """Bounded read-only views of the cards, rebuilt on every call."""
        limit = max_rows or get_settings().card_context_rows
        return [
            CardContext(id=c.id, title=c.plan.title or '', aggregated_data_sample=c.aggregated_data[:limit])
            for c in self.state.analysis_cards
        ]

    def validation_context(self) -> ValidationContext:
        return ValidationContext(card_ids=[c.id for c in self.state.analysis_cards])

    def column_names(self) -> Optional[List[str]]:
        return [p.name for p in self.state.column_profiles] or None

    def filtered_rows(self) -> List[Row]:
        """Dataset rows with the AI spreadsheet filter applied."""
        if not self.state.spreadsheet_filter:
            return list(self.state.rows)
        return apply_row_filter(self.state.rows, self.state.spreadsheet_filter.function_body)

    # --- dataset intake ----------------------------------------------------

    async def load_dataset(self, rows: Sequence[Row], filename: Optional[str] = None) -> None:
        """
        Replace the session dataset and run the initial analysis.

        Raises:
            ExecutionError: data preparation emptied or broke the dataset
        """
        rows = list(rows)
        self.memory.clear()
        self.state = SessionSnapshot(session_id=self.session_id, filename=filename, created_at=self.state.created_at)
        self.state.initial_data_sample = rows[:INITIAL_SAMPLE_ROWS]
        self.add_progress(f"Parsed {len(rows)} rows.")

        if not ai_client.is_ai_available():
            self.add_progress("API Key not set. Please configure an AI provider.", 'error')
            self.state.rows = rows
            self.state.column_profiles = profile_columns(rows)
            self._persist()
            return

        self.add_progress("AI is analyzing data for cleaning...")
        try:
            prepared = await prepare_dataset(rows)
        except AssistantError as e:
            self.add_progress(f"File Processing Error: {e}", 'error')
            self._persist()
            raise

        for note in prepared.notes:
            self.add_progress(note)
        self.state.rows = prepared.rows
        self.state.column_profiles = prepared.column_profiles
        self.state.data_preparation_plan = prepared.plan
        self._persist()

        await self.handle_initial_analysis()

    async def handle_initial_analysis(self) -> None:
        self.add_progress("AI is generating analysis plans...")
        try:
            plans = await generate_analysis_plans(self.state.column_profiles, self.state.rows)
        except AssistantError as e:
            self.add_progress(f"Error during analysis: {e}", 'error')
            plans = []
        else:
            self.add_progress(f"AI proposed {len(plans)} plans.")
            if not plans:
                self.add_progress("AI did not propose any analysis plans.", 'error')

        if plans:
            await self.run_analysis_pipeline(plans, is_chat_request=False)
        self.add_progress("Analysis complete. Ready for chat.")
        self._persist()

    # --- analysis pipeline -------------------------------------------------

    def _build_card(self, plan: AnalysisPlan, aggregated: List[Row], summary: str,
                    card_id: Optional[str] = None) -> AnalysisCard:
        settings = get_settings()
        large = plan.chart_type != 'scatter' and len(aggregated) > settings.large_card_threshold
        return AnalysisCard(
            id=card_id or new_card_id(),
            plan=plan,
            aggregated_data=aggregated,
            summary=summary,
            display_chart_type=plan.chart_type or 'bar',
            top_n=settings.default_top_n if large else plan.default_top_n,
            hide_others=True if large else bool(plan.default_hide_others),
        )

    def _execute_plans(self, plans: Sequence[AnalysisPlan]) -> List[Tuple[AnalysisPlan, List[Row]]]:
        viable = []
        for plan in plans:
            self.add_progress(f"Executing plan: {plan.title}...")
            try:
                aggregated = execute_plan(self.state.rows, plan)
            except ValueError as e:
                self.add_progress(f"Error executing plan \"{plan.title}\": {e}", 'error')
                continue
            if not aggregated:
                self.add_progress(f"Skipping \"{plan.title}\" due to empty result.", 'error')
                continue
            viable.append((plan, aggregated))
        return viable

    async def _summarize_all(self, items: Sequence[Tuple[AnalysisPlan, List[Row]]]) -> List[str]:
        semaphore = asyncio.Semaphore(get_settings().summary_concurrency)

        async def summarize(plan: AnalysisPlan, aggregated: List[Row]) -> str:
            async with semaphore:
                self.add_progress(f"AI is summarizing: {plan.title}...")
                return await generate_summary(plan.title or '', aggregated)

        return await asyncio.gather(*(summarize(plan, aggregated) for plan, aggregated in items))

    def _index_card(self, card: AnalysisCard) -> None:
        self.memory.add_document(MemoryDocument(
            id=card.id,
            text=f"[Chart: {card.plan.title}] Description: {card.plan.description or ''}. "
                 f"AI Summary: {first_language(card.summary)}",
        ))

    async def run_analysis_pipeline(self, plans: Sequence[AnalysisPlan],
                                    is_chat_request: bool = False) -> List[AnalysisCard]:
        """
        Aggregate, summarise and append a card per viable plan, in plan order.

        Plans that produce no rows are skipped. Initial (non-chat) runs also
        produce the core briefing, the proactive insight and the final summary.
        """
        viable = self._execute_plans(plans)
        summaries = await self._summarize_all(viable)

        created = []
        for (plan, aggregated), summary in zip(viable, summaries):
            card = self._build_card(plan, aggregated, summary)
            self.state.analysis_cards.append(card)
            self._index_card(card)
            self.add_progress(f"Saved as View #{card.id[-6:]}")
            created.append(card)

        if not is_chat_request and created:
            await self._summarize_session(created)
        self._persist()
        return created

    async def _summarize_session(self, cards: Sequence[AnalysisCard]) -> None:
        self.add_progress("AI is forming its core understanding of the data...")
        contexts = [
            CardContext(id=c.id, title=c.plan.title or '', aggregated_data_sample=c.aggregated_data[:CORE_SUMMARY_CARD_ROWS])
            for c in cards
        ]
        core_summary = await generate_core_analysis_summary(contexts, self.state.column_profiles)
        self.state.core_analysis_summary = core_summary
        self._add_message('ai', core_summary, type='ai_thinking')
        self.memory.add_document(MemoryDocument(id=CORE_SUMMARY_DOC_ID, text=f"Core Analysis Summary: {core_summary}"))

        self.add_progress("AI is looking for key insights...")
        insight = await generate_proactive_insight(contexts)
        if insight:
            text, card_id = insight
            self._add_message('ai', text, type='ai_proactive_insight', card_id=card_id)

        self.state.final_summary = await generate_final_summary(cards)
        self.add_progress("Overall summary generated.")

    async def regenerate_analyses(self) -> None:
        """
        Recompute every card against the current dataset.

        Card ids and display state are kept; cards whose plan no longer yields
        rows are dropped.
        """
        self.add_progress("Data has changed. Regenerating all analysis cards...")
        existing = list(self.state.analysis_cards)
        self.state.final_summary = None
        if not existing:
            self._persist()
            return

        viable = self._execute_plans([c.plan for c in existing])
        kept_plans = {id(plan) for plan, _ in viable}
        summaries = await self._summarize_all(viable)
        by_plan = {id(plan): (aggregated, summary) for (plan, aggregated), summary in zip(viable, summaries)}

        cards = []
        for old in existing:
            if id(old.plan) not in kept_plans:
                self.memory_forget(old.id)
                continue
            aggregated, summary = by_plan[id(old.plan)]
            card = old.model_copy(update={'aggregated_data': aggregated, 'summary': summary})
            cards.append(card)
            self._index_card(card)

        self.state.analysis_cards = cards
        if cards:
            self.state.final_summary = await generate_final_summary(cards)
        self._persist()

    def memory_forget(self, doc_id: str) -> None:
        remaining = [d for d in self.memory.documents() if d.id != doc_id]
        self.memory.rehydrate(remaining)

    # --- chat --------------------------------------------------------------

    async def _request_actions(self, message: str, feedback: Optional[str]) -> List[AiAction]:
        settings = get_settings()
        memories = [d.text for d in self.memory.search(message, settings.memory_top_k)]
        prompt = prompts.chat_prompt(
            columns=self.state.column_profiles,
            history=self.state.chat_history[-settings.chat_history_limit:],
            message=message,
            cards=self.card_contexts(),
            language=settings.language,
            core_summary=self.state.core_analysis_summary,
            sample=self.state.rows[:settings.plan_sample_rows],
            memories=memories,
            preparation=self.state.data_preparation_plan,
            feedback=feedback,
        )
        content = await ai_client.call_ai(prompt, prompts.SYSTEM_CHAT, schema=CHAT_ACTIONS_SCHEMA)
        return normalize_actions(ai_client.parse_json_object(content))

    def _preflight_errors(self, actions: Sequence[AiAction]) -> List[str]:
        """
        Dry-run code actions on the sample before anything in the batch runs.

        Each dry run gets the previous one's output, so a transform sees the
        columns added by the transforms before it. The chain stops at the
        first failure.
        """
        sample_size = get_settings().transform_sample_rows
        sample = self.state.rows[:sample_size]
        for action in actions:
            if not isinstance(action, ExecuteCodeAction):
                continue
            try:
                sample = dry_run_transform(sample, action.code.function_body, sample_size)
            except ExecutionError as e:
                return [
                    f"- Action \"execute_js_code\" (thought: \"{action.thought}\") failed a dry run "
                    f"on sample data:\n  - {e}"
                ]
        return []

    def _batch_errors(self, actions: Sequence[AiAction]) -> List[str]:
        if not actions:
            return ["- The response contained no actions. Return at least one action."]
        context = self.validation_context()
        errors = [r.errors for r in (validate_action(a, context) for a in actions) if not r.is_valid]
        return errors or self._preflight_errors(actions)

    async def submit_user_message(self, message: str) -> ChatTurnResult:
        """
        Run one ReAct turn: propose, validate, then execute or retry with feedback.

        A batch is executed only if every action in it is valid.
        """
        settings = get_settings()
        max_attempts = settings.chat_max_attempts
        self._add_message('user', message, type='user_message')
        self.state.pending_clarification = None

        if not ai_client.is_ai_available():
            self.add_progress("API Key not set.", 'error')
            self._persist()
            return ChatTurnResult(status='failed', error="API Key not set.")

        feedback: Optional[str] = None
        attempt = 0
        try:
            for attempt in range(1, max_attempts + 1):
                try:
                    actions = await self._request_actions(message, feedback)
                    errors = self._batch_errors(actions)
                except ParseError as e:
                    errors = [f"- The response could not be parsed: {e}"]

                if not errors:
                    return await self._execute_batch(actions, attempt)

                self.log.info(f"Attempt {attempt}/{max_attempts} rejected", extra={'errors': errors})
                if attempt == max_attempts:
                    raise ActionValidationError("AI failed to provide a valid action after multiple attempts.")
                feedback = f"{RETRY_FEEDBACK_HEADER}\n" + '\n'.join(errors)
                self.add_progress(f"AI response invalid. Retrying (Attempt {attempt + 1}/{max_attempts})...")
        except ActionValidationError as e:
            self._report_error(e)
            return ChatTurnResult(status='validation_failed', attempts=attempt, error=str(e))
        except AssistantError as e:
            self._report_error(e)
            return ChatTurnResult(status='failed', attempts=attempt, error=str(e))
        finally:
            self._persist()

    async def _execute_batch(self, actions: Sequence[AiAction], attempt: int) -> ChatTurnResult:
        executed = 0
        try:
            executed, paused = await self.apply_validated_actions(actions)
        except AssistantError as e:
            # Earlier actions stay applied; nothing is rolled back
            self._report_error(e)
            return ChatTurnResult(status='failed', attempts=attempt, executed_actions=executed, error=str(e))
        status = 'awaiting_clarification' if paused else 'completed'
        return ChatTurnResult(status=status, attempts=attempt, executed_actions=executed)

    async def apply_validated_actions(self, actions: Sequence[AiAction]) -> Tuple[int, bool]:
        """
        Execute actions sequentially, in order.

        Returns (executed count, paused for clarification).
        """
        executed = 0
        for action in actions:
            if action.thought:
                self.add_progress(f"AI Thought: {action.thought}")

            if isinstance(action, TextResponseAction):
                self._add_message('ai', action.text, card_id=action.card_id)
            elif isinstance(action, PlanCreationAction):
                await self._create_chart(action.plan)
            elif isinstance(action, DomActionAction):
                self.execute_dom_action(action.dom_action)
            elif isinstance(action, ExecuteCodeAction):
                await self._transform_dataset(action.code.function_body, action.code.explanation)
            elif isinstance(action, FilterSpreadsheetAction):
                self.add_progress("AI is filtering data explorer.")
                await self.handle_natural_language_query(action.args.query)
                self.state.is_spreadsheet_visible = True
            elif isinstance(action, ClarificationRequestAction):
                self.state.pending_clarification = action.clarification
                self._add_message('ai', action.clarification.question, type='ai_clarification',
                                  clarification=action.clarification)
                executed += 1
                self._persist()
                return executed, True
            executed += 1
            self._persist()
        return executed, False

    async def _create_chart(self, plan: AnalysisPlan) -> List[AnalysisCard]:
        self._add_message('ai', f"Okay, creating a chart for \"{plan.title}\".", type='ai_plan_start')
        cards = await self.run_analysis_pipeline([plan], is_chat_request=True)
        for card in cards:
            self._add_message('ai', first_language(card.summary) or 'New chart created.', card_id=card.id)
        return cards

    async def _transform_dataset(self, body: str, explanation: Optional[str]) -> None:
        rows = run_transform(self.state.rows, body, get_settings().transform_sample_rows)
        if not rows:
            raise ExecutionError("The transformation removed every row; the dataset was left unchanged.")
        self.state.rows = rows
        self.state.column_profiles = profile_columns(rows)
        self.add_progress(f"Dataset transformed: {explanation or 'AI code applied'} ({len(rows)} rows).")
        await self.regenerate_analyses()

    def execute_dom_action(self, dom_action: DomAction) -> None:
        """Mutate a card's display state, or emit a transient highlight event."""
        self.add_progress(f"AI is performing action: {dom_action.tool_name}...")
        args = dom_action.args
        card = self.find_card(args.get('cardId'))
        if card is None:
            return

        if dom_action.tool_name == 'highlightCard':
            self.state.highlighted_card_id = card.id
            self.ui_events.append({'type': 'highlightCard', 'cardId': card.id})
        elif dom_action.tool_name == 'changeCardChartType':
            card.display_chart_type = args['newType']
        elif dom_action.tool_name == 'showCardData':
            card.is_data_visible = bool(args['visible'])
        elif dom_action.tool_name == 'filterCard':
            values = args.get('values') or []
            card.filter = CardFilter(column=args['column'], values=values) if values else None

    # --- clarification -----------------------------------------------------

    def _complete_plan(self, option: ClarificationOption) -> Dict[str, Any]:
        pending = self.state.pending_clarification
        completed = dict(pending.pending_plan or {})
        if pending.target_property == 'merge':
            fragment = option.value
            if isinstance(fragment, str):
                try:
                    fragment = json.loads(fragment)
                except json.JSONDecodeError as e:
                    raise ParseError(f"Clarification value is not a JSON plan fragment: {e}") from e
            if not isinstance(fragment, dict):
                raise ParseError("Clarification value must be a JSON object for 'merge'.")
            completed.update(fragment)
        else:
            completed[pending.target_property] = option.value

        label = str(option.label)
        completed['title'] = label
        completed['description'] = f"Analysis of {label}."
        if not completed.get('chartType'):
            completed['chartType'] = 'bar'
        if not completed.get('aggregation') and completed['chartType'] != 'scatter':
            completed['aggregation'] = 'sum' if completed.get('valueColumn') else 'count'
        return completed

    async def submit_clarification_response(self, option: ClarificationOption) -> ChatTurnResult:
        """Answer the pending clarification's targetProperty and build the chart."""
        if self.state.pending_clarification is None:
            return ChatTurnResult(status='failed', error="No clarification is pending.")

        self._add_message('user', f"Selected: {option.label}", type='user_message')
        try:
            completed = self._complete_plan(option)
            self.state.pending_clarification = None
            plan = coerce_plan(completed)
            errors = plan_errors(plan, self.column_names())
            if errors:
                raise ExecutionError("The completed plan is invalid: " + ' '.join(errors))
            cards = await self._create_chart(plan)
        except AssistantError as e:
            self.state.pending_clarification = None
            self.add_progress(f"Error processing clarification: {e}", 'error')
            self._add_message('ai', f"Sorry, an error occurred: {e}", is_error=True)
            return ChatTurnResult(status='failed', attempts=1, error=str(e))
        finally:
            self._persist()
        return ChatTurnResult(status='completed', attempts=1, executed_actions=len(cards))

    # --- spreadsheet filter ------------------------------------------------

    async def handle_natural_language_query(self, query: str) -> Optional[SpreadsheetFilter]:
        if not self.state.rows or not ai_client.is_ai_available():
            self.add_progress("Cannot perform AI query: API Key/data missing.", 'error')
            return None

        self.state.spreadsheet_filter = None
        self.add_progress(f"AI is processing your data query: \"{query}\"...")
        try:
            spreadsheet_filter = await generate_filter_function(
                query, self.state.column_profiles, self.state.rows[:FILTER_SAMPLE_ROWS]
            )
        except AssistantError as e:
            self.add_progress(f"AI query failed: {e}", 'error')
            self._persist()
            return None

        self.state.spreadsheet_filter = spreadsheet_filter
        self.add_progress(f"AI filter applied: {spreadsheet_filter.explanation}")
        self._persist()
        return spreadsheet_filter

    def clear_ai_filter(self) -> None:
        self.state.spreadsheet_filter = None
        self.add_progress("AI data filter cleared.")
        self._persist()
