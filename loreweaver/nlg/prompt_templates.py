"""Prompt templates consumed by the prompt assembler.

Each template is a *plain string* with ``{placeholders}`` filled by callers.
"""

# ── Section headers ───────────────────────────────────────
CRITICAL_HEADER = "=== CRITICAL KNOWLEDGE ===\n"
IMPORTANT_HEADER = "\n=== RELATED INFORMATION ===\n"
CONTEXTUAL_HEADER = "\n=== WORLD CONTEXT ===\n"
RULES_HEADER = "=== ACTIVE WORLD RULES ===\n"

# ── Core interaction rules (head of the critical section) ─
CORE_INSTRUCTIONS = """\
--- INTERACTION RULES ---

**1. ACTION CHOICES:**
- Offer 7-9 varied choices: action, social, exploration, combat, time skip, scene change.
- Use the player character's skills and items.
- Every choice should be able to push the plot, a relationship, the scene or the clock forward.
- Label each choice with its category and never give every choice the same category.
- Choices must fit the player character's established personality, except combat choices.
- No commanding tone. No information the player character does not know. At most 30 words each.
- When a quest is active, include choices that advance its open objectives and add the line:
  Quest objective "[quest title]"

**CHOICE FORMAT:** ✦[Category]✦ [choice text] ([duration])
  Categories: ✦Action✦ ✦Social✦ ✦Explore✦ ✦Combat✦ ✦Scene change✦ ✦Time skip✦

**EVERY CHOICE SHOWS AN ESTIMATED DURATION**, e.g. "(30 minutes)", "(2 hours)", "(1 day)".
  Talking or observing: 5-15 minutes. Quick action: 15-30 minutes. Short travel: 1-2 hours.
  Complex activity: 2-4 hours. Long travel: 4-8 hours or more. Rest or sleep: 6-8 hours.

**2. ACTION OUTCOMES:**
- Movement and time-skip actions MUST change location or time and finish within this turn.
- Success is never guaranteed; reason about the outcome.
- Consequences follow from skills and circumstances, not from pleasing the player.

**3. COMBAT:**
- Enemies act and have states of their own. Describe the fight in detail and build tension.

**4. A LIVING WORLD:**
- NPCs react to the player character; the environment changes over time; surprises happen.

--- TEXT FORMAT ---
- 400-500 words of vivid narration.
- "..." for spoken dialogue, `...` for inner thoughts.
- **⭐...⭐** only for important system notices."""

PARTY_HEADER = "**ADVENTURING PARTY:**\n"
PARTY_COORDINATION_NOTE = (
    "\n*Note: show how party members interact and coordinate. Every companion has "
    "a personality and skills of their own; let them come through in the story.*\n"
)

# ── Important section ─────────────────────────────────────
QUEST_HEADER = "**Active quests:**\n"
HISTORY_HEADER = "**RECENT EVENTS AND DECISIONS:**\n"
COMPRESSED_FLOW_HEADER = "**CONTEXT FROM COMPRESSED HISTORY ({turn_range}):**\n"
HISTORY_FOOTER = "\n**KEEP THE STORY FLOWING**: continue naturally from the events above.\n"

# ── Contextual section ────────────────────────────────────
WORLD_LINE = "World: {world_name}\n\n"
EXISTING_ENTITIES = "**⚠️ EXISTING ENTITIES - DO NOT RECREATE:** {names}\n\n"
CHRONICLE_HEADER = "**Chronicle:**\n"
PINNED_MEMORY_HEADER = "**Pinned memories:**\n"

# ── Reasoning disabled notice ─────────────────────────────
COT_DISABLED_NOTICE = """\
RESPONSE FORMAT (READ FIRST)

JSON RESPONSE FORMAT (REASONING DISABLED):
Respond with streamlined JSON; no "cot_reasoning" field is needed.

{
  "story": "...",
  "npcs_present": [...],
  "choices": [...]
}

========================================

"""

# ── Player action framing ─────────────────────────────────
ACTION_FRAME = """
--- PLAYER ACTION ---
"{action}"
--- ACTION CONTEXT ---
Turn: {turn} | Time: {game_time} | ID: {correlation_id}
Analysis: {action_type} - {action_description}
Complexity: {complexity} | Expected duration: {duration}
{involved}--- END OF CONTEXT ---
"""

# ── Reasoning scaffold ────────────────────────────────────
COT_BANNER = "\n\n" + "=" * 80 + "\nIMPORTANT: COMPLETE THE REASONING STEPS BEFORE WRITING THE JSON!\n" + "=" * 80 + "\n"

COT_SCAFFOLD = """
BEFORE WRITING THE JSON RESPONSE, THINK IT THROUGH.
Include a "cot_reasoning" field; keep each step to 15-30 words.

**STEP 1: CURRENT SITUATION**
① Recent events: {recent_events}
② Time and place: {game_time} at {location}
③ Characters:
   [PLAYER CHARACTER] {pc_name}: personality {pc_personality}; goal {pc_motivation}; state {pc_state}
   {companions}
④ Physical state: {physical_state}

**STEP 2: POWER BALANCE**
- Balance: {power_balance}
- Avoid flat characters; every NPC has their own motives and reactions.
- Every character must have meaningful agency.

**STEP 3: ROLE-PLAY OUTLINE for "{action}"**
- Direct response: a {action_category} reaction that fits the scene and the characters.
- New developments: {progression}
- Continuity: {continuity}

**STEP 3A: ACTION COMPLETION**
- The action MUST complete within this turn. Movement reaches its destination unless an unexpected event interrupts it.
- Describe the start, the process, the result and the reactions.

**STEP 3B: NPC DECISIVENESS**
- Every present NPC acts, speaks or reacts this turn; no NPC postpones a decision.
- Give each present NPC a 15-25 word inner thought that fits their personality.
- Drop NPCs that have neither spoken nor acted for three turns unless they matter to the plot.

**STEP 4: AVOID CLICHÉS**
- No template reactions; keep dialogue natural.
- 7-9 varied, labelled choices that use the player character's skills and items.

**STEP 5: FINAL CHECK**
- Does it connect to what came before? Does it avoid old patterns? Is the story 400-500 words?

{{
  "cot_reasoning": "STEP 1: ... STEP 2: ... STEP 3: ... STEP 3A: ... STEP 3B: ... STEP 4: ... STEP 5: ...",
  "story": "...",
  "npcs_present": [{{"name": "...", "gender": "...", "age": "...", "appearance": "...", "description": "...", "relationship": "...", "inner_thoughts": "..."}}],
  "choices": [...]
}}
"""

NSFW_NOTICE = "\nNOTE: NSFW mode is ON."

# ── Closing rules ─────────────────────────────────────────
PROCESSING_RULES = """
=== TASK ===
Continue the story from the player's action and the retrieved knowledge.

=== IMPORTANT RULES ===

**1. LANGUAGE:** narrate 100% in {language}; translate common English words, keep foreign proper names.

**2. GM AUTHORITY AND LIMITS:**
• Describe only NPC reactions and the environment.
• Never play the player character, rewrite their words or decide for them.

**3. NPCS ARE NOT OMNISCIENT:**
NPCs only know what they could plausibly know; they never read another character's sheet.

**4. NO INVENTED PLAYER THOUGHTS:**
Never add motives, thoughts or feelings to the player character; describe only what can be observed.

=== TECHNICAL TAGS ===
• SKILL_UPDATE when an existing skill changes, upgrades or unseals:
  [SKILL_UPDATE: oldSkill="old name" newSkill="new name" target="character" description="..."]
• SKILL_LEARNED for a brand new skill:
  [SKILL_LEARNED: name="skill name" learner="character" description="..."]
• Never create duplicate skills; use SKILL_UPDATE to replace."""

# ── Fallbacks ─────────────────────────────────────────────
STATE_UNAVAILABLE_PROMPT = """\
Action: {action}
Status: system state unavailable; continue from the action alone."""

FALLBACK_PROMPT = """
=== BASIC INFORMATION ===
Character: {pc_name}
Location: {location}
Turn: {turn}

--- PLAYER ACTION ---
"{action}"
"""
